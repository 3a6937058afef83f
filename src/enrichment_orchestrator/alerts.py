from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Protocol

import httpx
import structlog

log = structlog.get_logger()


@dataclass(frozen=True)
class FailureStreakAlert:
    user_id: str
    integration_id: str
    tool: str
    consecutive_failures: int
    last_error: str | None


class AlertSender(Protocol):
    async def send(self, alert: FailureStreakAlert) -> None: ...


class LogAlertSender:
    async def send(self, alert: FailureStreakAlert) -> None:
        log.warning("integration_failure_streak", **asdict(alert))


class WebhookAlertSender:
    def __init__(self, url: str, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 10.0):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, alert: FailureStreakAlert) -> None:
        resp = await self._client.post(
            self.url,
            json={"type": "integration_failure_streak", **asdict(alert)},
        )
        resp.raise_for_status()
