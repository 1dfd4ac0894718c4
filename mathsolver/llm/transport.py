"""Backend transports.

`HttpTransport` speaks the three supported wire protocols. It never retries:
retrying with another token is the fallback engine's job. Every failure is
raised as `TransportError` carrying the HTTP status and decoded error body
so the classifier can inspect them.
"""

import logging
import time
from typing import Any, Protocol

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI
from openai.types.chat import ChatCompletion

from mathsolver.constants import (
    ANTHROPIC_BASE_URL,
    ANTHROPIC_VERSION,
    BACKEND_TIMEOUT_SECONDS,
    DEFAULT_MODELS,
    GEMINI_BASE_URL,
    LLM_MAX_OUTPUT_TOKENS,
    LLM_TEMPERATURE,
    OPENAI_BASE_URL,
    SYSTEM_PROMPT,
)
from mathsolver.schemas import ProviderKind

logger = logging.getLogger(__name__)


class TransportError(Exception):
    def __init__(self, message: str, status: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class Transport(Protocol):
    async def invoke(
        self, kind: ProviderKind, model: str, key: str, prompt: str
    ) -> str | None: ...


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpTransport:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        system_prompt: str = SYSTEM_PROMPT,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        max_tokens: int = LLM_MAX_OUTPUT_TOKENS,
        temperature: float = LLM_TEMPERATURE,
        openai_base_url: str = OPENAI_BASE_URL,
        gemini_base_url: str = GEMINI_BASE_URL,
        anthropic_base_url: str = ANTHROPIC_BASE_URL,
    ) -> None:
        self._timeout = httpx.Timeout(timeout)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._system_prompt = system_prompt
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._openai_base_url = openai_base_url
        self._gemini_base_url = gemini_base_url.rstrip("/")
        self._anthropic_base_url = anthropic_base_url.rstrip("/")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def invoke(self, kind: ProviderKind, model: str, key: str, prompt: str) -> str | None:
        effective_model = model or DEFAULT_MODELS[kind.value]
        handlers = {
            ProviderKind.OPENAI: self._call_openai,
            ProviderKind.GEMINI: self._call_gemini,
            ProviderKind.CLAUDE: self._call_claude,
        }
        handler = handlers.get(kind)
        if handler is None:
            raise TransportError(f"Unknown provider: {kind}")

        logger.info("Backend request starting (provider=%s, model=%s)", kind, effective_model)
        start_time = time.perf_counter()
        try:
            text = await handler(prompt, effective_model, key)
        except TransportError as e:
            elapsed = time.perf_counter() - start_time
            logger.warning(
                "Backend request failed after %.2fs (provider=%s, status=%s): %s",
                elapsed,
                kind,
                e.status,
                e,
            )
            raise
        logger.info("Backend request completed in %.2fs", time.perf_counter() - start_time)
        return text

    async def _call_openai(self, prompt: str, model: str, key: str) -> str | None:
        client = AsyncOpenAI(
            api_key=key,
            base_url=self._openai_base_url,
            timeout=self._timeout,
            max_retries=0,
            http_client=self._client,
        )
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": self._system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except APIStatusError as e:
            raise TransportError(str(e), status=e.status_code, body=e.body) from e
        except APIConnectionError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        except APIError as e:
            raise TransportError(f"{type(e).__name__}: {e}", body=e.body) from e

        if not isinstance(completion, ChatCompletion):
            raise TransportError("Malformed response body")
        choices = getattr(completion, "choices", None)
        if not choices:
            return None
        return choices[0].message.content

    async def _call_gemini(self, prompt: str, model: str, key: str) -> str | None:
        data = await self._post(
            f"{self._gemini_base_url}/{model}:generateContent",
            params={"key": key},
            json={
                "contents": [{"parts": [{"text": f"{self._system_prompt}\n\n{prompt}"}]}],
                "generationConfig": {
                    "temperature": self._temperature,
                    "maxOutputTokens": self._max_tokens,
                },
            },
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None

    async def _call_claude(self, prompt: str, model: str, key: str) -> str | None:
        data = await self._post(
            f"{self._anthropic_base_url}/messages",
            headers={"x-api-key": key, "anthropic-version": ANTHROPIC_VERSION},
            json={
                "model": model,
                "max_tokens": self._max_tokens,
                "system": self._system_prompt,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        try:
            return data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None

    async def _post(
        self,
        url: str,
        json: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = await self._client.post(
                url, json=json, headers=headers, params=params, timeout=self._timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} from {e.request.url.host}",
                status=e.response.status_code,
                body=_decode_body(e.response),
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise TransportError("Malformed response body", status=response.status_code) from e
