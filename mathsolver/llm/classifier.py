"""Backend failure classification.

Each backend kind has its own explicit match rules against the documented
error payload shape. Rules are evaluated fatal-first; anything that matches
neither the fatal nor the quota rules is transient and moves the fallback
loop on to the next token.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from mathsolver.llm.transport import TransportError
from mathsolver.schemas import ProviderKind


class ErrorKind(StrEnum):
    FATAL = "fatal"
    QUOTA_EXCEEDED = "quota_exceeded"
    TRANSIENT = "transient"


class ProviderCallError(Exception):
    """A backend failure that must stop the fallback loop."""

    def __init__(self, kind: ErrorKind, hint: str, provider: ProviderKind | None = None) -> None:
        super().__init__(hint)
        self.kind = kind
        self.hint = hint
        self.provider = provider


@dataclass(frozen=True)
class ClassificationRules:
    code_fields: tuple[str, ...]
    fatal_codes: frozenset[str] = frozenset()
    fatal_phrases: tuple[str, ...] = ()
    quota_codes: frozenset[str] = frozenset()
    quota_phrases: tuple[str, ...] = ()


# Codes are compared lower-cased.
RULES: dict[ProviderKind, ClassificationRules] = {
    # {"error": {"message": ..., "type": ..., "code": ...}}
    ProviderKind.OPENAI: ClassificationRules(
        code_fields=("code", "type"),
        fatal_codes=frozenset({"model_not_found"}),
        fatal_phrases=("does not exist", "not available"),
        quota_codes=frozenset({"insufficient_quota", "rate_limit_exceeded"}),
        quota_phrases=("quota", "rate_limit", "rate limit"),
    ),
    # {"error": {"code": 404, "message": ..., "status": "NOT_FOUND"}}
    ProviderKind.GEMINI: ClassificationRules(
        code_fields=("status",),
        fatal_codes=frozenset({"not_found"}),
        fatal_phrases=("is not found", "not supported for"),
        quota_codes=frozenset({"resource_exhausted"}),
        quota_phrases=("quota",),
    ),
    # {"type": "error", "error": {"type": "not_found_error", "message": ...}}
    ProviderKind.CLAUDE: ClassificationRules(
        code_fields=("type",),
        fatal_codes=frozenset({"not_found_error"}),
        quota_codes=frozenset({"rate_limit_error"}),
    ),
}


def _error_object(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        return {}
    inner = body.get("error")
    if isinstance(inner, dict):
        return inner
    return body


def _codes(error: dict[str, Any], fields: tuple[str, ...]) -> set[str]:
    return {str(error[f]).lower() for f in fields if error.get(f) is not None}


def _message(error: dict[str, Any]) -> str:
    message = error.get("message")
    return message.lower() if isinstance(message, str) else ""


def classify(kind: ProviderKind, error: TransportError) -> ErrorKind:
    if error.status == 404:
        return ErrorKind.FATAL
    if error.status == 429:
        return ErrorKind.QUOTA_EXCEEDED
    if error.status is None or error.status >= 500:
        return ErrorKind.TRANSIENT

    rules = RULES[kind]
    payload = _error_object(error.body)
    codes = _codes(payload, rules.code_fields)
    message = _message(payload)

    if codes & rules.fatal_codes or any(p in message for p in rules.fatal_phrases):
        return ErrorKind.FATAL
    if codes & rules.quota_codes or any(p in message for p in rules.quota_phrases):
        return ErrorKind.QUOTA_EXCEEDED
    return ErrorKind.TRANSIENT


def remediation_hint(kind: ErrorKind, model: str) -> str:
    if kind == ErrorKind.FATAL:
        return (
            f'Model "{model}" does not exist or is not enabled for the configured API key. '
            "Switch the provider to another model or add an API key that has access to it."
        )
    if kind == ErrorKind.QUOTA_EXCEEDED:
        return "API rate limit or budget exhausted. Check the token or add a new one."
    return "The AI backend is temporarily unavailable."
