from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

from .alerts import AlertSender, FailureStreakAlert, LogAlertSender
from .backoff import retry_with_backoff
from .background import BackgroundTasks
from .cache import CacheGateway, make_cache_key
from .config import OrchestratorConfig
from .dispatcher import error_code_for_exception
from .errors import (
    ConfigurationError,
    IntegrationInactiveError,
    IntegrationNotFoundError,
    ToolNotAllowedError,
)
from .metrics import rate_limit_rejections_total, tool_calls_total
from .store import RATE_LIMITED, AuditRecord, AuditStore, RateLimitStore

log = structlog.get_logger()


@dataclass(frozen=True)
class IntegrationConfig:
    integration_id: str
    platform: str
    integration_class: str = "catalog"
    active: bool = True
    allowed_tools: frozenset[str] = frozenset()
    rate_limit: int | None = None
    window_seconds: int | None = None
    base_url: str | None = None
    credentials: dict[str, str] = field(default_factory=dict, compare=False, repr=False)


class IntegrationRegistry(Protocol):
    async def get_integration(self, user_id: str, integration_id: str) -> IntegrationConfig | None: ...


class StaticIntegrationRegistry:
    def __init__(self, integrations: list[IntegrationConfig] | None = None):
        self._by_id = {i.integration_id: i for i in integrations or []}

    async def get_integration(self, user_id: str, integration_id: str) -> IntegrationConfig | None:
        return self._by_id.get(integration_id)


@dataclass(frozen=True)
class ToolOutput:
    result: str
    data: Any = None

    def to_cache(self) -> dict[str, Any]:
        return {"result": self.result, "data": self.data}

    @classmethod
    def from_cache(cls, value: dict[str, Any]) -> "ToolOutput":
        return cls(result=str(value.get("result", "")), data=value.get("data"))


class ToolHandler(Protocol):
    async def __call__(self, integration: IntegrationConfig, tool: str, arguments: dict[str, Any]) -> ToolOutput: ...


class HttpToolHandler:
    """Forward a tool call as JSON to `{base_url}/tools/{tool}` on the integration."""

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 30.0):
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    async def __call__(self, integration: IntegrationConfig, tool: str, arguments: dict[str, Any]) -> ToolOutput:
        if not integration.base_url:
            raise ConfigurationError(f"Integration {integration.integration_id!r} has no base_url.")
        headers = {"Content-Type": "application/json"}
        api_key = integration.credentials.get("api_key")
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        resp = await self._client.post(
            f"{integration.base_url.rstrip('/')}/tools/{tool}",
            json={"arguments": arguments},
            headers=headers,
        )
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict) and isinstance(data.get("result"), str):
            return ToolOutput(result=data["result"], data=data.get("data"))
        return ToolOutput(result=f"{tool} completed", data=data)


@dataclass(frozen=True)
class ToolCallResponse:
    success: bool
    tool: str
    result: str
    latency_ms: int
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "tool": self.tool, "result": self.result}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        if self.error_code is not None:
            out["errorCode"] = self.error_code
        out["latencyMs"] = self.latency_ms
        return out


@dataclass(frozen=True)
class RateLimitRejection:
    tool: str
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int

    status_code = 429

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at_iso,
            "Retry-After": str(self.retry_after_seconds),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "tool": self.tool,
            "error": "Rate limit exceeded",
            "limit": self.limit,
            "remaining": self.remaining,
            "resetAt": self.reset_at_iso,
            "retryAfterSeconds": self.retry_after_seconds,
        }


class ToolProxy:
    """
    Entry point for third-party platform tool calls made on behalf of a user.

    Order per call: integration/allow-list check, atomic rate-limit
    check-and-increment, cache gateway, handler. The audit write and any
    failure-streak alert run as detached background tasks.
    """

    def __init__(
        self,
        integrations: IntegrationRegistry,
        handlers: dict[str, ToolHandler],
        *,
        cache: CacheGateway,
        rate_limits: RateLimitStore,
        audit: AuditStore,
        alerts: AlertSender | None = None,
        background: BackgroundTasks | None = None,
        cfg: OrchestratorConfig | None = None,
        clock: Callable[[], float] | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.integrations = integrations
        self.handlers = handlers
        self.cache = cache
        self.rate_limits = rate_limits
        self.audit = audit
        self.alerts = alerts or LogAlertSender()
        self.background = background or BackgroundTasks()
        self.cfg = cfg or OrchestratorConfig()
        self._clock: Callable[[], float] = clock or time.time
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    async def _resolve(self, user_id: str, integration_id: str, tool: str) -> tuple[IntegrationConfig, ToolHandler]:
        integration = await self.integrations.get_integration(user_id, integration_id)
        if integration is None:
            raise IntegrationNotFoundError(f"Integration {integration_id!r} is not configured.")
        if not integration.active:
            raise IntegrationInactiveError(f"Integration {integration_id!r} is inactive.")
        if tool not in integration.allowed_tools:
            raise ToolNotAllowedError(f"Tool {tool!r} is not allowed for integration {integration_id!r}.")
        handler = self.handlers.get(integration.platform)
        if handler is None:
            raise ConfigurationError(f"No handler registered for platform {integration.platform!r}.")
        return integration, handler

    async def _invoke(
        self, handler: ToolHandler, integration: IntegrationConfig, tool: str, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        output = await retry_with_backoff(
            lambda: handler(integration, tool, arguments),
            max_retries=self.cfg.retry_max_retries,
            initial_delay=self.cfg.retry_initial_delay_seconds,
            name=f"tool:{integration.platform}",
            sleeper=self._sleep,
        )
        return output.to_cache()

    async def call(
        self,
        user_id: str,
        integration_id: str,
        tool: str,
        arguments: dict[str, Any] | None = None,
    ) -> ToolCallResponse | RateLimitRejection:
        args = dict(arguments or {})
        integration, handler = await self._resolve(user_id, integration_id, tool)

        now = self._clock()
        window = await self.rate_limits.check_and_increment(
            user_id,
            integration_id,
            limit=integration.rate_limit or self.cfg.rate_limit_default,
            window_seconds=integration.window_seconds or self.cfg.rate_limit_window_seconds,
            now=now,
        )
        if not window.allowed:
            rate_limit_rejections_total.labels(integration=integration_id).inc()
            retry_after = max(1, math.ceil(window.reset_at - now))
            log.info(
                "tool_call_rate_limited",
                user_id=user_id,
                integration=integration_id,
                tool=tool,
                limit=window.limit,
                retry_after_seconds=retry_after,
            )
            rejection = RateLimitRejection(
                tool=tool,
                limit=window.limit,
                remaining=window.remaining,
                reset_at=window.reset_at,
                retry_after_seconds=retry_after,
            )
            self._spawn_audit(
                AuditRecord(
                    user_id=user_id,
                    integration_id=integration_id,
                    tool=tool,
                    arguments=args,
                    success=False,
                    latency_ms=0,
                    cache_status=RATE_LIMITED,
                    created_at=now,
                    error="Rate limit exceeded",
                )
            )
            return rejection

        key = make_cache_key(f"tool:{integration_id}:{tool}", {"user_id": user_id, "arguments": args})
        ttl = self.cfg.ttl_for(integration.integration_class)
        started = time.monotonic()
        cache_status = "miss"
        try:
            lookup = await self.cache.get_or_compute(
                key, ttl, lambda: self._invoke(handler, integration, tool, args)
            )
            cache_status = lookup.status
            output = ToolOutput.from_cache(lookup.value)
            response = ToolCallResponse(
                success=True,
                tool=tool,
                result=output.result,
                data=output.data,
                latency_ms=int((time.monotonic() - started) * 1000),
                cached=lookup.hit,
            )
        except Exception as e:
            kind = error_code_for_exception(e)
            log.warning(
                "tool_call_failed",
                user_id=user_id,
                integration=integration_id,
                tool=tool,
                error_kind=kind.value,
                error=str(e),
            )
            response = ToolCallResponse(
                success=False,
                tool=tool,
                result="",
                error=str(e) or e.__class__.__name__,
                error_code=kind.value,
                latency_ms=int((time.monotonic() - started) * 1000),
            )

        tool_calls_total.labels(integration=integration_id, status="success" if response.success else "error").inc()
        record = AuditRecord(
            user_id=user_id,
            integration_id=integration_id,
            tool=tool,
            arguments=args,
            success=response.success,
            latency_ms=response.latency_ms,
            cache_status=cache_status,
            created_at=now,
            error=response.error,
        )
        self._spawn_audit(record)
        return response

    def _spawn_audit(self, record: AuditRecord) -> None:
        self.background.spawn(f"audit:{record.integration_id}:{record.tool}", self._audit_and_alert(record))

    async def _audit_and_alert(self, record: AuditRecord) -> None:
        await retry_with_backoff(
            lambda: self.audit.record_call(record),
            max_retries=self.cfg.retry_max_retries,
            initial_delay=self.cfg.retry_initial_delay_seconds,
            name="audit",
            sleeper=self._sleep,
        )
        if record.success or record.rate_limited:
            return

        threshold = self.cfg.failure_streak_threshold
        recent = await self.audit.recent_outcomes(record.user_id, record.integration_id, threshold)
        if len(recent) < threshold or any(recent):
            return

        alert = FailureStreakAlert(
            user_id=record.user_id,
            integration_id=record.integration_id,
            tool=record.tool,
            consecutive_failures=threshold,
            last_error=record.error,
        )
        self.background.spawn(f"alert:{record.integration_id}", self.alerts.send(alert))
