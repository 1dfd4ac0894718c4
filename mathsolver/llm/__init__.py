"""Provider/token routing layer.

Provider activation, token quotas, error classification and the fallback loop.
"""

from mathsolver.llm.classifier import ErrorKind, ProviderCallError, classify
from mathsolver.llm.engine import Completion, FallbackEngine
from mathsolver.llm.quota import QuotaClock
from mathsolver.llm.registry import ProviderRegistry
from mathsolver.llm.token_pool import TokenPool
from mathsolver.llm.transport import HttpTransport, Transport, TransportError
from mathsolver.llm.usage import UsageTracker

__all__ = [
    "Completion",
    "ErrorKind",
    "FallbackEngine",
    "HttpTransport",
    "ProviderCallError",
    "ProviderRegistry",
    "QuotaClock",
    "TokenPool",
    "Transport",
    "TransportError",
    "UsageTracker",
    "classify",
]
