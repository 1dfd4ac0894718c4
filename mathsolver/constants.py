"""Configuration constants with trade-off documentation.

Each constant has a rationale explaining why this specific value was chosen.
Values that operators are expected to change are read from the environment.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# Environment Variable Helpers
# =============================================================================


def _parse_int_env(name: str, default: int, min_val: int, max_val: int) -> int:
    """Parse an integer environment variable with bounds clamping.

    Returns default if env var is unset or unparseable. Clamps to [min_val, max_val].
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, value))


def _parse_float_env(name: str, default: float, min_val: float, max_val: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, value))


# =============================================================================
# Persistence
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///mathsolver.db")
# Why SQLite by default: a single bot process needs no database server to start.
# Point at postgresql+asyncpg://... for multi-worker deployments.

PROVIDER_CONFIG_PATH = os.getenv("PROVIDER_CONFIG_PATH", "")
# Path to a YAML file with the providers to create on first start.
# Empty means the built-in defaults (one record per backend kind, none active).

STORE_LOCK_RETRY_ATTEMPTS = 5
# Why 5: SQLite raises "database is locked" when two writers collide.
# Each attempt already waits for the driver busy timeout, so 5 covers bursts
# without hiding a genuinely wedged database.

# =============================================================================
# Token Quotas
# =============================================================================

DEFAULT_DAILY_LIMIT = _parse_int_env(
    "DEFAULT_DAILY_LIMIT", default=1000, min_val=0, max_val=10_000_000
)
# Why 1000: Matches the free-tier request budget of the cheapest models we use.
# Tokens added without an explicit limit get this ceiling.

# =============================================================================
# Backend Calls
# =============================================================================

BACKEND_TIMEOUT_SECONDS = _parse_int_env(
    "BACKEND_TIMEOUT_SECONDS", default=30, min_val=1, max_val=300
)
# Why 30: Step-by-step solutions take 5-15s on current models. 30s leaves room
# for slow responses while keeping a stuck call from blocking the fallback loop.

LLM_MAX_OUTPUT_TOKENS = _parse_int_env(
    "LLM_MAX_OUTPUT_TOKENS", default=1500, min_val=64, max_val=16384
)
# Why 1500: A worked solution with numbered steps rarely exceeds 1000 tokens.

LLM_TEMPERATURE = _parse_float_env("LLM_TEMPERATURE", default=0.7, min_val=0.0, max_val=2.0)

SYSTEM_PROMPT = os.getenv(
    "SYSTEM_PROMPT",
    "You are a professional mathematics teacher. You only solve mathematics problems.",
)

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/models"
)
ANTHROPIC_BASE_URL = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
ANTHROPIC_VERSION = os.getenv("ANTHROPIC_VERSION", "2023-06-01")

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-3.5-turbo",
    "gemini": "gemini-pro",
    "claude": "claude-3-sonnet-20240229",
}
# Used when a provider has no selected model.

# =============================================================================
# Admin Surface
# =============================================================================

ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "")
# Empty disables the bearer check (local development only).

PROBE_QUERY = os.getenv("PROBE_QUERY", "What is 15 + 27?")
# Why a trivial sum: any working model answers it in one short call, so the
# admin "test provider" action costs a single cheap request.

PLACEHOLDER_EXCERPT_CHARS = 300
# Why 300: Enough to echo the problem back to the user without flooding the chat.
