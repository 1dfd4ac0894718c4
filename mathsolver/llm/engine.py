from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from mathsolver.constants import BACKEND_TIMEOUT_SECONDS, PLACEHOLDER_EXCERPT_CHARS, PROBE_QUERY
from mathsolver.llm.classifier import ErrorKind, ProviderCallError, classify, remediation_hint
from mathsolver.llm.registry import ProviderRegistry
from mathsolver.llm.transport import Transport, TransportError
from mathsolver.llm.usage import UsageTracker
from mathsolver.schemas import ProbeResult, ProviderKind, SolveResult, SolveStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    text: str
    provider: ProviderKind
    token_id: str
    attempts: int


def placeholder_response(prompt: str) -> str:
    excerpt = prompt.strip()[:PLACEHOLDER_EXCERPT_CHARS] or "Unknown problem"
    return (
        "Solution (test mode)\n\n"
        f"Problem: {excerpt}\n\n"
        "The AI provider is not configured or no token is currently available.\n\n"
        "This is a placeholder answer. Configure a provider and add tokens in the "
        "admin panel to get real solutions."
    )


class FallbackEngine:
    """Runs one logical request against the active provider.

    Tokens are tried least-used first, each at most once per request. Fatal and
    quota errors stop the loop; transient errors move on to the next token; if
    nothing can serve the request the caller gets a placeholder.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        transport: Transport,
        usage: UsageTracker,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry
        self._transport = transport
        self._usage = usage
        self._timeout = timeout

    async def complete(self, prompt: str) -> Completion | None:
        """Return the first successful completion, or None when exhausted.

        Raises ProviderCallError on fatal or quota failures.
        """
        provider = await self._registry.get_active()
        if provider is None:
            logger.warning("No active AI provider configured")
            return None

        candidates = self._registry.token_pool(provider).available_tokens()
        if not candidates:
            logger.warning("No available tokens with remaining quota for %s", provider.kind)
            return None

        for attempt, token in enumerate(candidates, start=1):
            try:
                text = await asyncio.wait_for(
                    self._transport.invoke(
                        provider.kind, provider.selected_model, token.key, prompt
                    ),
                    timeout=self._timeout,
                )
            except TimeoutError:
                logger.warning(
                    "%s token %s timed out after %.0fs", provider.kind, token.label, self._timeout
                )
                continue
            except TransportError as e:
                kind = classify(provider.kind, e)
                logger.log(
                    logging.WARNING if kind == ErrorKind.TRANSIENT else logging.ERROR,
                    "Error with %s token %s (status=%s, class=%s): %s",
                    provider.kind,
                    token.label,
                    e.status,
                    kind,
                    e.body if e.body is not None else e,
                )
                if kind != ErrorKind.TRANSIENT:
                    raise ProviderCallError(
                        kind, remediation_hint(kind, provider.selected_model), provider.kind
                    ) from e
                continue
            except Exception as e:
                logger.warning(
                    "Unexpected failure with %s token %s: %s: %s",
                    provider.kind,
                    token.label,
                    type(e).__name__,
                    e,
                )
                continue

            if not text:
                logger.warning("%s token %s returned an empty response", provider.kind, token.label)
                continue

            await self._usage.record(provider.id, token.id)
            return Completion(
                text=text, provider=provider.kind, token_id=token.id, attempts=attempt
            )

        logger.warning("All %d tokens failed for %s", len(candidates), provider.kind)
        return None

    async def solve(self, prompt: str) -> SolveResult:
        try:
            completion = await self.complete(prompt)
        except ProviderCallError as e:
            return SolveResult(status=SolveStatus.ERROR, error=e.hint, provider=e.provider)

        if completion is None:
            logger.warning("AI not available, using placeholder response")
            return SolveResult(status=SolveStatus.DEGRADED, text=placeholder_response(prompt))

        return SolveResult(
            status=SolveStatus.SOLUTION,
            text=completion.text,
            provider=completion.provider,
            token_id=completion.token_id,
            attempts=completion.attempts,
        )

    async def probe(self, provider_id: int, query: str = PROBE_QUERY) -> ProbeResult:
        await self._registry.check_ready(provider_id)
        start_time = time.perf_counter()
        result = await self.solve(query)
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        return ProbeResult(query=query, result=result, response_time_ms=round(elapsed_ms, 1))
