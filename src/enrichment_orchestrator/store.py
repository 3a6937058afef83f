"""
Persistence seams used by the orchestration core.

The relational schema behind these tables is owned elsewhere; this module only
describes the operations the core needs and ships two backends:

  - `InMemoryStore`: single-process, asyncio-lock based (tests, local runs)
  - `RedisStore`: shared store; rate limiting is one server-side Lua script
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import structlog

from .errors import StoreError

log = structlog.get_logger()

RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class RateLimitWindow:
    allowed: bool
    count: int
    limit: int
    reset_at: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


@dataclass(frozen=True)
class AuditRecord:
    user_id: str
    integration_id: str
    tool: str
    arguments: dict[str, Any]
    success: bool
    latency_ms: int
    cache_status: str
    created_at: float
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def rate_limited(self) -> bool:
        return self.cache_status == RATE_LIMITED

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class CacheStore(Protocol):
    async def get_entry(self, key: str) -> CacheEntry | None: ...

    async def put_entry(self, entry: CacheEntry) -> None: ...


class RateLimitStore(Protocol):
    async def check_and_increment(
        self, user_id: str, integration_id: str, *, limit: int, window_seconds: int, now: float
    ) -> RateLimitWindow: ...


class AuditStore(Protocol):
    async def record_call(self, record: AuditRecord) -> None: ...

    async def recent_outcomes(self, user_id: str, integration_id: str, limit: int) -> list[bool]: ...


class SettingsStore(Protocol):
    async def get_provider_settings(self, provider_id: str) -> dict[str, Any] | None: ...


class InMemoryStore:
    def __init__(
        self,
        *,
        provider_settings: dict[str, dict[str, Any]] | None = None,
        audit_history: int = 100,
    ):
        self.cache: dict[str, CacheEntry] = {}
        self.rate_limits: dict[tuple[str, str], tuple[int, float]] = {}
        self.audit_log: list[AuditRecord] = []
        self.provider_settings: dict[str, dict[str, Any]] = dict(provider_settings or {})
        self._recent: dict[tuple[str, str], deque[bool]] = defaultdict(lambda: deque(maxlen=audit_history))
        self._rate_lock = asyncio.Lock()

    async def get_entry(self, key: str) -> CacheEntry | None:
        return self.cache.get(key)

    async def put_entry(self, entry: CacheEntry) -> None:
        self.cache[entry.key] = entry

    async def check_and_increment(
        self, user_id: str, integration_id: str, *, limit: int, window_seconds: int, now: float
    ) -> RateLimitWindow:
        async with self._rate_lock:
            count, reset_at = self.rate_limits.get((user_id, integration_id), (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            allowed = count < limit
            if allowed:
                count += 1
            self.rate_limits[(user_id, integration_id)] = (count, reset_at)
            return RateLimitWindow(allowed=allowed, count=count, limit=limit, reset_at=reset_at)

    async def record_call(self, record: AuditRecord) -> None:
        self.audit_log.append(record)
        if record.rate_limited:
            return
        self._recent[(record.user_id, record.integration_id)].appendleft(record.success)

    async def recent_outcomes(self, user_id: str, integration_id: str, limit: int) -> list[bool]:
        return list(self._recent[(user_id, integration_id)])[:limit]

    async def get_provider_settings(self, provider_id: str) -> dict[str, Any] | None:
        return self.provider_settings.get(provider_id)


_RATE_LIMIT_SCRIPT = """
local count = tonumber(redis.call('HGET', KEYS[1], 'count') or '0')
local reset_at = tonumber(redis.call('HGET', KEYS[1], 'reset_at') or '0')
local now = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])
local window = tonumber(ARGV[3])
if reset_at <= now then
  count = 0
  reset_at = now + window
end
local allowed = 0
if count < limit then
  count = count + 1
  allowed = 1
end
redis.call('HSET', KEYS[1], 'count', count, 'reset_at', tostring(reset_at))
redis.call('EXPIREAT', KEYS[1], math.ceil(reset_at) + 1)
return {allowed, count, tostring(reset_at)}
"""


class RedisStore:
    def __init__(self, redis: Any, *, prefix: str = "enrichment", audit_history: int = 100):
        from redis.exceptions import RedisError

        self.redis = redis
        self.prefix = prefix
        self.audit_history = audit_history
        self._errors = RedisError
        self._rate_limit = redis.register_script(_RATE_LIMIT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStore":
        import redis.asyncio as aioredis

        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
            health_check_interval=30,
        )
        return cls(client, **kwargs)

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    async def close(self) -> None:
        await self.redis.aclose()

    async def get_entry(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.redis.get(self._key("cache", key))
        except self._errors as e:
            raise StoreError(f"Cache read failed: {e}") from e
        if raw is None:
            return None
        doc = json.loads(raw)
        return CacheEntry(key=key, value=doc["value"], expires_at=float(doc["expires_at"]))

    async def put_entry(self, entry: CacheEntry) -> None:
        doc = json.dumps({"value": entry.value, "expires_at": entry.expires_at})
        try:
            await self.redis.set(self._key("cache", entry.key), doc)
        except self._errors as e:
            raise StoreError(f"Cache write failed: {e}") from e

    async def check_and_increment(
        self, user_id: str, integration_id: str, *, limit: int, window_seconds: int, now: float
    ) -> RateLimitWindow:
        try:
            allowed, count, reset_at = await self._rate_limit(
                keys=[self._key("ratelimit", user_id, integration_id)],
                args=[now, limit, window_seconds],
            )
        except self._errors as e:
            raise StoreError(f"Rate limit update failed: {e}") from e
        return RateLimitWindow(allowed=bool(int(allowed)), count=int(count), limit=limit, reset_at=float(reset_at))

    async def record_call(self, record: AuditRecord) -> None:
        key = self._key("audit", record.user_id, record.integration_id)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.lpush(key, json.dumps(record.to_dict(), default=str))
            pipe.ltrim(key, 0, self.audit_history - 1)
            if not record.rate_limited:
                outcomes = self._key("outcomes", record.user_id, record.integration_id)
                pipe.lpush(outcomes, int(record.success))
                pipe.ltrim(outcomes, 0, self.audit_history - 1)
            await pipe.execute()
        except self._errors as e:
            raise StoreError(f"Audit write failed: {e}") from e

    async def recent_outcomes(self, user_id: str, integration_id: str, limit: int) -> list[bool]:
        try:
            rows = await self.redis.lrange(self._key("outcomes", user_id, integration_id), 0, limit - 1)
        except self._errors as e:
            raise StoreError(f"Audit read failed: {e}") from e
        return [bool(int(row)) for row in rows]

    async def get_provider_settings(self, provider_id: str) -> dict[str, Any] | None:
        try:
            row = await self.redis.hgetall(self._key("provider_settings", provider_id))
        except self._errors as e:
            raise StoreError(f"Settings read failed: {e}") from e
        if not row:
            return None
        log.debug("provider_settings_loaded", provider=provider_id)
        return dict(row)
