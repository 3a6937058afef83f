from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from .metrics import cache_lookups_total
from .store import CacheEntry, CacheStore

log = structlog.get_logger()

T = TypeVar("T")


def make_cache_key(operation: str, arguments: Any) -> str:
    canonical = json.dumps(arguments, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(f"{operation}\x00{canonical}".encode("utf-8")).hexdigest()
    return f"{operation}:{digest}"


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    value: T
    hit: bool

    @property
    def status(self) -> str:
        return "hit" if self.hit else "miss"


class CacheGateway:
    def __init__(self, store: CacheStore, *, clock: Callable[[], float] | None = None):
        self.store = store
        self._clock: Callable[[], float] = clock or time.time

    async def get_or_compute(
        self,
        key: str,
        ttl_minutes: float,
        compute: Callable[[], Awaitable[T]],
    ) -> CacheLookup[T]:
        now = self._clock()
        entry = await self.store.get_entry(key)
        if entry is not None and entry.is_fresh(now):
            cache_lookups_total.labels(result="hit").inc()
            log.debug("cache_hit", key=key)
            return CacheLookup(value=entry.value, hit=True)

        cache_lookups_total.labels(result="miss").inc()
        # Exceptions from compute propagate before anything is written.
        value = await compute()
        expires_at = self._clock() + ttl_minutes * 60
        await self.store.put_entry(CacheEntry(key=key, value=value, expires_at=expires_at))
        log.debug("cache_miss_stored", key=key, ttl_minutes=ttl_minutes)
        return CacheLookup(value=value, hit=False)
