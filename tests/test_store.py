import asyncio
import os
import uuid

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from enrichment_orchestrator.errors import StoreError
from enrichment_orchestrator.store import RATE_LIMITED, AuditRecord, CacheEntry, InMemoryStore, RedisStore


def _record(
    success: bool, user_id: str = "u1", integration_id: str = "shop", cache_status: str = "miss"
) -> AuditRecord:
    return AuditRecord(
        user_id=user_id,
        integration_id=integration_id,
        tool="lookup",
        arguments={"sku": "A1"},
        success=success,
        latency_ms=12,
        cache_status=cache_status,
        created_at=1_700_000_000.0,
    )


@pytest.mark.asyncio
async def test_in_memory_rate_limit_counts_only_admitted_calls():
    store = InMemoryStore()
    windows = [
        await store.check_and_increment("u1", "shop", limit=2, window_seconds=60, now=100.0) for _ in range(4)
    ]
    assert [w.allowed for w in windows] == [True, True, False, False]
    assert [w.remaining for w in windows] == [1, 0, 0, 0]
    assert store.rate_limits[("u1", "shop")] == (2, 160.0)


@pytest.mark.asyncio
async def test_in_memory_recent_outcomes_newest_first():
    store = InMemoryStore(audit_history=3)
    for success in (True, False, False, True):
        await store.record_call(_record(success))
    assert await store.recent_outcomes("u1", "shop", 10) == [True, False, False]
    assert await store.recent_outcomes("u1", "shop", 2) == [True, False]
    assert await store.recent_outcomes("u2", "shop", 2) == []
    assert len(store.audit_log) == 4


@pytest.mark.asyncio
async def test_in_memory_rejected_calls_are_logged_but_not_outcomes():
    store = InMemoryStore()
    await store.record_call(_record(True))
    await store.record_call(_record(False, cache_status=RATE_LIMITED))
    assert await store.recent_outcomes("u1", "shop", 5) == [True]
    assert [r.rate_limited for r in store.audit_log] == [False, True]


class _FailingRedis:
    def __init__(self):
        self._error = RedisConnectionError

    def register_script(self, script):
        async def _run(keys, args):
            raise self._error("connection lost")

        return _run

    async def get(self, key):
        raise self._error("connection lost")

    async def hgetall(self, key):
        raise self._error("connection lost")


@pytest.mark.asyncio
async def test_redis_errors_are_wrapped():
    store = RedisStore(_FailingRedis())
    with pytest.raises(StoreError):
        await store.get_entry("k")
    with pytest.raises(StoreError):
        await store.check_and_increment("u1", "shop", limit=1, window_seconds=60, now=0.0)
    with pytest.raises(StoreError):
        await store.get_provider_settings("ollama")


@pytest.mark.asyncio
@pytest.mark.skipif(not os.getenv("REDIS_URL"), reason="REDIS_URL not set")
async def test_redis_store_against_live_server():
    store = RedisStore.from_url(os.environ["REDIS_URL"], prefix=f"test-{uuid.uuid4().hex}")
    try:
        await store.put_entry(CacheEntry(key="k", value={"a": 1}, expires_at=123.0))
        assert await store.get_entry("k") == CacheEntry(key="k", value={"a": 1}, expires_at=123.0)

        windows = await asyncio.gather(
            *(store.check_and_increment("u1", "shop", limit=3, window_seconds=60, now=1_000.0) for _ in range(10))
        )
        assert sum(w.allowed for w in windows) == 3

        for success in (False, True):
            await store.record_call(_record(success))
        await store.record_call(_record(False, cache_status=RATE_LIMITED))
        assert await store.recent_outcomes("u1", "shop", 5) == [True, False]
    finally:
        await store.close()
