"""Unit tests for RequestCache: coalescing, TTL, invalidation, persistence."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from services.request_cache import RequestCache, SqlCacheStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def counting_fetcher(value="v"):
    calls = {"n": 0}

    async def _fetch():
        calls["n"] += 1
        await asyncio.sleep(0)
        return f"{value}{calls['n']}"

    return _fetch, calls


# ---------------------------------------------------------------------------
# Coalescing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    release = asyncio.Event()
    calls = []

    async def _fetch():
        calls.append(1)
        await release.wait()
        return {"connected": True}

    waiters = [asyncio.ensure_future(cache.get_or_fetch("k", _fetch)) for _ in range(10)]
    await asyncio.sleep(0)
    assert cache.is_in_flight("k")
    release.set()
    results = await asyncio.gather(*waiters)

    assert len(calls) == 1
    assert all(result == {"connected": True} for result in results)
    assert not cache.is_in_flight("k")


@pytest.mark.asyncio
async def test_fetch_error_reaches_every_waiter_and_is_not_cached():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    fetch = AsyncMock(side_effect=RuntimeError("boom"))

    results = await asyncio.gather(
        cache.get_or_fetch("k", fetch),
        cache.get_or_fetch("k", fetch),
        return_exceptions=True,
    )
    assert all(isinstance(r, RuntimeError) for r in results)
    assert fetch.await_count == 1

    fetch.side_effect = None
    fetch.return_value = "ok"
    assert await cache.get_or_fetch("k", fetch) == "ok"


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_fetch():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    release = asyncio.Event()

    async def _fetch():
        await release.wait()
        return "v"

    first = asyncio.ensure_future(cache.get_or_fetch("k", _fetch))
    second = asyncio.ensure_future(cache.get_or_fetch("k", _fetch))
    await asyncio.sleep(0)
    first.cancel()
    release.set()

    assert await second == "v"
    assert cache.peek("k") == "v"


# ---------------------------------------------------------------------------
# TTL
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_entry_served_until_ttl_then_refetched():
    clock = FakeClock(1000.0)
    cache = RequestCache(ttl_seconds=300, clock=clock)
    fetch, calls = counting_fetcher()

    assert await cache.get_or_fetch("k", fetch) == "v1"

    clock.now = 1000.0 + 300 - 0.001
    assert await cache.get_or_fetch("k", fetch) == "v1"
    assert calls["n"] == 1

    clock.now = 1000.0 + 300 + 0.001
    assert cache.peek("k") is None
    assert await cache.get_or_fetch("k", fetch) == "v2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_keys_are_independent():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    fetch, calls = counting_fetcher()
    await cache.get_or_fetch("a", fetch)
    await cache.get_or_fetch("b", fetch)
    assert calls["n"] == 2


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_invalidate_forces_refetch():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    fetch, calls = counting_fetcher()

    await cache.get_or_fetch("k", fetch)
    await cache.invalidate("k")
    assert await cache.get_or_fetch("k", fetch) == "v2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_invalidate_during_fetch_discards_result():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    release = asyncio.Event()

    async def _slow():
        await release.wait()
        return "old"

    waiter = asyncio.ensure_future(cache.get_or_fetch("k", _slow))
    await asyncio.sleep(0)
    await cache.invalidate("k")
    release.set()

    assert await waiter == "old"
    assert cache.peek("k") is None


@pytest.mark.asyncio
async def test_clear_empties_every_key():
    cache = RequestCache(ttl_seconds=60, clock=FakeClock())
    fetch, calls = counting_fetcher()
    await cache.get_or_fetch("a", fetch)
    await cache.get_or_fetch("b", fetch)

    await cache.clear()

    assert cache.peek("a") is None
    assert cache.peek("b") is None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fresh_persisted_entry_warm_starts_new_cache(engine):
    clock = FakeClock(1000.0)
    store = SqlCacheStore()
    fetch, calls = counting_fetcher()

    first = RequestCache(ttl_seconds=60, clock=clock, store=store, owner_id="u1")
    assert await first.get_or_fetch("k", fetch) == "v1"

    clock.now = 1030.0
    second = RequestCache(ttl_seconds=60, clock=clock, store=store, owner_id="u1")
    assert await second.get_or_fetch("k", fetch) == "v1"
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_persisted_entry_of_other_owner_is_ignored(engine):
    clock = FakeClock(1000.0)
    store = SqlCacheStore()
    fetch, calls = counting_fetcher()

    await RequestCache(60, clock=clock, store=store, owner_id="u1").get_or_fetch("k", fetch)
    other = RequestCache(60, clock=clock, store=store, owner_id="u2")

    assert await other.get_or_fetch("k", fetch) == "v2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_expired_persisted_entry_is_ignored(engine):
    clock = FakeClock(1000.0)
    store = SqlCacheStore()
    fetch, calls = counting_fetcher()

    await RequestCache(60, clock=clock, store=store, owner_id="u1").get_or_fetch("k", fetch)
    clock.now = 1061.0

    assert await RequestCache(60, clock=clock, store=store, owner_id="u1").get_or_fetch("k", fetch) == "v2"


@pytest.mark.asyncio
async def test_invalidate_deletes_persisted_entry(engine):
    clock = FakeClock(1000.0)
    store = SqlCacheStore()
    fetch, _ = counting_fetcher()
    cache = RequestCache(60, clock=clock, store=store, owner_id="u1")

    await cache.get_or_fetch("k", fetch)
    await cache.invalidate("k")

    assert await store.load("k") is None


@pytest.mark.asyncio
async def test_store_failure_does_not_break_fetch():
    store = AsyncMock(spec=SqlCacheStore)
    store.load.side_effect = RuntimeError("db down")
    store.save.side_effect = RuntimeError("db down")
    cache = RequestCache(60, clock=FakeClock(), store=store, owner_id="u1")
    fetch, _ = counting_fetcher()

    assert await cache.get_or_fetch("k", fetch) == "v1"
    assert cache.peek("k") == "v1"


@pytest.mark.asyncio
async def test_ownerless_clear_keeps_entries_of_other_caches(engine):
    clock = FakeClock(1000.0)
    store = SqlCacheStore()
    fetch, _ = counting_fetcher()
    mine = RequestCache(60, clock=clock, store=store)
    other = RequestCache(60, clock=clock, store=store)

    await mine.get_or_fetch("mine", fetch)
    await other.get_or_fetch("theirs", fetch)
    await mine.clear()

    assert await store.load("mine") is None
    assert (await store.load("theirs"))["value"] == "v2"


@pytest.mark.asyncio
async def test_owner_clear_removes_only_that_owners_entries(engine):
    clock = FakeClock(1000.0)
    store = SqlCacheStore()
    fetch, _ = counting_fetcher()
    u1 = RequestCache(60, clock=clock, store=store, owner_id="u1")

    await u1.get_or_fetch("k1", fetch)
    await RequestCache(60, clock=clock, store=store, owner_id="u2").get_or_fetch("k2", fetch)
    await u1.clear()

    assert await store.load("k1") is None
    assert (await store.load("k2"))["owner_id"] == "u2"
