import pytest

from enrichment_orchestrator.cache import CacheGateway, make_cache_key
from enrichment_orchestrator.store import InMemoryStore


class _Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _counter(value="computed"):
    calls = {"n": 0}

    async def _compute():
        calls["n"] += 1
        return {"value": value, "n": calls["n"]}

    return _compute, calls


def test_cache_key_is_stable_across_argument_order():
    a = make_cache_key("tool:shop:lookup", {"sku": "1", "locale": "fr"})
    b = make_cache_key("tool:shop:lookup", {"locale": "fr", "sku": "1"})
    assert a == b
    assert a.startswith("tool:shop:lookup:")
    assert make_cache_key("tool:shop:lookup", {"sku": "2"}) != a


@pytest.mark.asyncio
async def test_miss_then_hit_computes_once():
    gateway = CacheGateway(InMemoryStore(), clock=_Clock())
    compute, calls = _counter()

    first = await gateway.get_or_compute("k", 5, compute)
    second = await gateway.get_or_compute("k", 5, compute)

    assert (first.hit, first.status) == (False, "miss")
    assert (second.hit, second.status) == (True, "hit")
    assert second.value == first.value
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_expired_entry_is_recomputed():
    clock = _Clock()
    store = InMemoryStore()
    gateway = CacheGateway(store, clock=clock)
    compute, calls = _counter()

    await gateway.get_or_compute("k", 1, compute)
    assert store.cache["k"].expires_at == 1_060.0

    clock.now = 1_060.0
    again = await gateway.get_or_compute("k", 1, compute)
    assert again.hit is False
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_compute_failure_is_not_cached():
    store = InMemoryStore()
    gateway = CacheGateway(store, clock=_Clock())

    async def _boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        await gateway.get_or_compute("k", 5, _boom)
    assert "k" not in store.cache
