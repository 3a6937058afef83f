from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .backoff import is_retryable, retry_with_backoff
from .contracts import CompletionRequest
from .credentials import ResolvedCredential
from .errors import RequestTimeoutError, UpstreamProtocolError

log = structlog.get_logger()


@dataclass(frozen=True)
class ProviderResponse:
    status_code: int
    content: str = ""
    retry_after_seconds: int | None = None
    body_excerpt: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _retry_connection_errors(exc: BaseException) -> bool:
    # Timeouts are final for an attempt; other transport failures are retried.
    if isinstance(exc, httpx.TimeoutException):
        return False
    return isinstance(exc, httpx.TransportError) and is_retryable(exc)


def extract_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise UpstreamProtocolError("Upstream response is not a JSON object.")

    content: Any = None
    message = data.get("message")
    if isinstance(message, dict):
        content = message.get("content")
    if not content:
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            choice_message = choices[0].get("message")
            if isinstance(choice_message, dict):
                content = choice_message.get("content")

    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False)


class ChatCompletionsClient:
    """
    OpenAI-compatible `/chat/completions` client shared by every provider.

    Connection failures are retried with exponential backoff underneath a
    single provider attempt; HTTP status handling is left to the dispatcher.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        initial_delay_seconds: float = 1.0,
        default_temperature: float = 0.7,
        default_max_tokens: int = 2000,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._client = client or httpx.AsyncClient()
        self._max_retries = max(0, max_retries)
        self._initial_delay = max(0.0, initial_delay_seconds)
        self._default_temperature = default_temperature
        self._default_max_tokens = default_max_tokens
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    async def close(self) -> None:
        await self._client.aclose()

    def build_payload(self, request: CompletionRequest, model: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": request.messages_payload(),
            "temperature": request.temperature if request.temperature is not None else self._default_temperature,
            "max_tokens": request.max_tokens if request.max_tokens is not None else self._default_max_tokens,
            # partial streamed payloads are never accepted
            "stream": False,
        }
        if request.web_search:
            payload["web_search"] = True
        return payload

    async def send(
        self,
        credential: ResolvedCredential,
        payload: dict[str, Any],
        *,
        timeout_seconds: float,
        provider_id: str = "provider",
    ) -> ProviderResponse:
        async def _post() -> httpx.Response:
            return await self._client.post(
                credential.endpoint,
                json=payload,
                headers=credential.headers(),
                timeout=timeout_seconds,
            )

        try:
            resp = await retry_with_backoff(
                _post,
                max_retries=self._max_retries,
                initial_delay=self._initial_delay,
                name=f"provider:{provider_id}",
                retry_on=_retry_connection_errors,
                sleeper=self._sleep,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{provider_id} did not respond within {timeout_seconds}s.") from e
        except httpx.HTTPError as e:
            raise UpstreamProtocolError(f"{provider_id} request failed: {e.__class__.__name__}.") from e

        if not 200 <= resp.status_code < 300:
            retry_after = resp.headers.get("retry-after")
            return ProviderResponse(
                status_code=resp.status_code,
                retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                body_excerpt=resp.text[:500],
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamProtocolError(f"{provider_id} returned a non-JSON body.") from e

        content = extract_content(data)
        log.debug("provider_response_ok", provider=provider_id, content_chars=len(content))
        return ProviderResponse(status_code=resp.status_code, content=content)
