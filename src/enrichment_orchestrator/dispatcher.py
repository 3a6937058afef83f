from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Any

import structlog

from .contracts import CompletionRequest, CompletionResult, ErrorKind, Failure, Success
from .credentials import ResolvedCredential
from .errors import RequestTimeoutError, UpstreamProtocolError
from .metrics import dispatch_results_total, provider_attempts_total, provider_latency_seconds
from .providers import ProviderDescriptor, ProviderTable
from .transport import ChatCompletionsClient

log = structlog.get_logger()

_STATUS_KINDS = {
    401: ErrorKind.AUTH_ERROR,
    402: ErrorKind.PAYMENT_REQUIRED,
    403: ErrorKind.AUTH_ERROR,
    429: ErrorKind.RATE_LIMITED,
    503: ErrorKind.PROVIDER_DOWN,
}


def classify_status(status_code: int) -> ErrorKind:
    return _STATUS_KINDS.get(status_code, ErrorKind.UNKNOWN)


def error_code_for_exception(error: Any) -> ErrorKind:
    """Best-effort classification of a free-form error by status or wording."""
    if error is None:
        return ErrorKind.UNKNOWN
    response = getattr(error, "response", None)
    status = (
        getattr(error, "status_code", None)
        or getattr(error, "status", None)
        or getattr(response, "status_code", None)
    )
    if isinstance(status, int) and status in _STATUS_KINDS:
        return _STATUS_KINDS[status]
    message = str(error).lower()
    if "auth" in message or "token" in message:
        return ErrorKind.AUTH_ERROR
    if "payment" in message or "credits" in message:
        return ErrorKind.PAYMENT_REQUIRED
    if "rate limit" in message or "quota" in message:
        return ErrorKind.RATE_LIMITED
    if "unavailable" in message or "down" in message:
        return ErrorKind.PROVIDER_DOWN
    return ErrorKind.UNKNOWN


class ProviderDispatcher:
    """
    Try providers one at a time, in priority order, until one answers.

    402/429/503 and connection failures move on to the next provider; any other
    error status, or a timeout, ends the dispatch with a Failure. The first
    success is returned as-is.
    """

    def __init__(self, providers: ProviderTable, *, transport: ChatCompletionsClient):
        self.providers = providers
        self.transport = transport

    async def _resolve(self, descriptor: ProviderDescriptor) -> ResolvedCredential | None:
        try:
            return await descriptor.resolve()
        except Exception as e:
            log.warning("dispatch_credential_lookup_failed", provider=descriptor.provider_id, error=str(e))
            return None

    def _finish(self, result: CompletionResult) -> CompletionResult:
        label = "success" if isinstance(result, Success) else result.error_kind.value
        dispatch_results_total.labels(result=label).inc()
        return result

    async def dispatch(self, request: CompletionRequest, exclude: Iterable[str] = ()) -> CompletionResult:
        excluded = frozenset(exclude)
        candidates = self.providers.candidates(excluded)
        log.info(
            "dispatch_started",
            model=request.model or "auto",
            candidates=[d.provider_id for d in candidates],
            excluded=sorted(excluded),
        )

        attempted: list[str] = []
        last_error: str | None = None

        for descriptor in candidates:
            provider_id = descriptor.provider_id
            credential = await self._resolve(descriptor)
            if credential is None:
                log.info("dispatch_provider_skipped", provider=provider_id, reason="no_credentials")
                continue

            attempted.append(provider_id)
            payload = self.transport.build_payload(request, descriptor.model_for(request.model))
            started = time.monotonic()
            try:
                resp = await self.transport.send(
                    credential, payload, timeout_seconds=descriptor.timeout_seconds, provider_id=provider_id
                )
            except RequestTimeoutError as e:
                provider_attempts_total.labels(provider=provider_id, outcome="timeout").inc()
                log.warning("dispatch_provider_timeout", provider=provider_id, error=str(e))
                return self._finish(Failure(str(e), ErrorKind.UNKNOWN, tuple(attempted)))
            except UpstreamProtocolError as e:
                provider_attempts_total.labels(provider=provider_id, outcome="unreachable").inc()
                last_error = str(e)
                log.warning("dispatch_fallback", provider=provider_id, reason="unreachable", error=last_error)
                continue
            finally:
                provider_latency_seconds.labels(provider=provider_id).observe(max(0.0, time.monotonic() - started))

            if not resp.ok:
                kind = classify_status(resp.status_code)
                provider_attempts_total.labels(provider=provider_id, outcome=kind.value).inc()
                last_error = f"{provider_id} returned HTTP {resp.status_code}: {resp.body_excerpt}".strip()
                if kind.falls_back:
                    log.warning(
                        "dispatch_fallback",
                        provider=provider_id,
                        status_code=resp.status_code,
                        error_kind=kind.value,
                    )
                    continue
                log.error("dispatch_fatal", provider=provider_id, status_code=resp.status_code, error_kind=kind.value)
                return self._finish(Failure(last_error, kind, tuple(attempted)))

            if not resp.content.strip():
                provider_attempts_total.labels(provider=provider_id, outcome="empty").inc()
                last_error = f"{provider_id} returned empty content"
                log.warning("dispatch_fallback", provider=provider_id, reason="empty_content")
                continue

            provider_attempts_total.labels(provider=provider_id, outcome="success").inc()
            log.info("dispatch_succeeded", provider=provider_id, attempted=attempted)
            return self._finish(Success(content=resp.content, provider_id=provider_id))

        log.error("dispatch_exhausted", attempted=attempted, last_error=last_error)
        return self._finish(
            Failure(last_error or "All AI providers failed", ErrorKind.PROVIDER_DOWN, tuple(attempted))
        )
