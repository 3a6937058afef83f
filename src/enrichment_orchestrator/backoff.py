from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from .errors import AuthenticationError, ConfigurationError
from .metrics import backoff_retries_total

log = structlog.get_logger()

T = TypeVar("T")

_NON_RETRYABLE_MARKERS = ("unauthorized", "forbidden", "not found", "401", "403", "404")


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (AuthenticationError, ConfigurationError)):
        return False
    message = str(exc).lower()
    return not any(marker in message for marker in _NON_RETRYABLE_MARKERS)


def backoff_delay(initial_delay: float, attempt: int) -> float:
    # attempt: 0-based retry index
    return max(0.0, initial_delay) * (2**attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    name: str = "operation",
    retry_on: Callable[[BaseException], bool] = is_retryable,
    sleeper: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """
    Invoke `operation`, retrying failures with exponential backoff.

    The first call is not a retry: at most `max_retries` further calls are made,
    sleeping `initial_delay * 2**attempt` before each. Failures rejected by
    `retry_on` (auth / forbidden / not-found) propagate immediately.
    """
    sleep = sleeper or asyncio.sleep
    retries = max(0, max_retries)
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if not retry_on(e):
                log.info("backoff_non_retryable", operation=name, error=str(e))
                raise
            if attempt >= retries:
                log.warning("backoff_exhausted", operation=name, attempts=attempt + 1, error=str(e))
                raise
            delay = backoff_delay(initial_delay, attempt)
            backoff_retries_total.labels(operation=name).inc()
            log.info("backoff_retry", operation=name, attempt=attempt + 1, delay_seconds=delay, error=str(e))
            await sleep(delay)
            attempt += 1
