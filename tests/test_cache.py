import asyncio

import pytest

from core.errors import TransientProviderError
from services.cache import ContentCache, InMemoryCacheStore, SqliteCacheStore, fingerprint


class Counter:
    def __init__(self, value="result", error=None, delay=0.0):
        self.calls = 0
        self.value = value
        self.error = error
        self.delay = delay

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


def make_cache(clock=None, store=None):
    return ContentCache(store or InMemoryCacheStore(), "digest", ttl_seconds=60, clock=clock or (lambda: 1_000))


def test_fingerprint_ignores_key_order():
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})
    assert len(fingerprint({"a": 1})) == 16


def test_key_always_contains_resource():
    cache = make_cache()
    key = cache.key_for("res-1", {"type": "push"})
    assert key.startswith("digest:res-1:")


def test_empty_resource_id_rejected():
    with pytest.raises(ValueError):
        make_cache().key_for("", {"type": "push"})


async def test_hit_does_not_recompute():
    cache = make_cache()
    compute = Counter()

    assert await cache.fetch("res-1", {"x": 1}, compute) == "result"
    assert await cache.fetch("res-1", {"x": 1}, compute) == "result"
    assert compute.calls == 1


async def test_identical_inputs_from_two_tenants_never_share_an_entry():
    cache = make_cache()
    first = Counter(value="tenant-a")
    second = Counter(value="tenant-b")

    assert await cache.fetch("res-a", {"x": 1}, first) == "tenant-a"
    assert await cache.fetch("res-b", {"x": 1}, second) == "tenant-b"
    assert first.calls == 1
    assert second.calls == 1


async def test_failures_are_not_cached():
    cache = make_cache()
    failing = Counter(error=TransientProviderError("rate limited", status_code=429))

    with pytest.raises(TransientProviderError):
        await cache.fetch("res-1", {"x": 1}, failing)

    ok = Counter(value="ok")
    assert await cache.fetch("res-1", {"x": 1}, ok) == "ok"
    assert ok.calls == 1


async def test_expired_entries_are_recomputed():
    now = [1_000]
    cache = make_cache(clock=lambda: now[0])
    compute = Counter()

    await cache.fetch("res-1", {"x": 1}, compute)
    now[0] += 61_000
    await cache.fetch("res-1", {"x": 1}, compute)
    assert compute.calls == 2


async def test_concurrent_misses_compute_once():
    cache = make_cache()
    compute = Counter(delay=0.01)

    results = await asyncio.gather(*(cache.fetch("res-1", {"x": 1}, compute) for _ in range(5)))
    assert results == ["result"] * 5
    assert compute.calls == 1


async def test_concurrent_waiters_share_the_failure():
    cache = make_cache()
    compute = Counter(error=RuntimeError("boom"), delay=0.01)

    results = await asyncio.gather(
        *(cache.fetch("res-1", {"x": 1}, compute) for _ in range(3)), return_exceptions=True
    )
    assert all(isinstance(r, RuntimeError) for r in results)
    assert compute.calls == 1


async def test_sqlite_store_round_trip_and_purge(db, resource):
    now = [1_000]
    cache = make_cache(clock=lambda: now[0], store=SqliteCacheStore(db))
    compute = Counter(value={"title": "Cached", "perspectives": None})

    assert await cache.fetch(resource.id, {"x": 1}, compute) == {"title": "Cached", "perspectives": None}
    assert await cache.fetch(resource.id, {"x": 1}, compute) == {"title": "Cached", "perspectives": None}
    assert compute.calls == 1

    now[0] += 120_000
    assert await cache.purge_expired() == 1
    assert await db.get_cache_entry(cache.key_for(resource.id, {"x": 1})) is None


async def test_cancelled_owner_hands_computation_to_waiters():
    cache = make_cache()
    slow = Counter(value="never", delay=10)
    fast = Counter(value="v")

    owner = asyncio.create_task(cache.fetch("res-1", {"x": 1}, slow))
    await asyncio.sleep(0.01)
    waiter = asyncio.create_task(cache.fetch("res-1", {"x": 1}, fast))
    await asyncio.sleep(0.01)
    owner.cancel()

    with pytest.raises(asyncio.CancelledError):
        await owner
    assert await waiter == "v"
    assert fast.calls == 1
    assert await cache.fetch("res-1", {"x": 1}, Counter()) == "v"
