"""Unit tests for QueryCache."""
import asyncio

import pytest

from processor.errors import NetworkError
from processor.models import DateRange
from storage.query_cache import (
    QueryCache,
    batch_key,
    public_events_key,
    tile_query_key,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class CountingFetch:
    """Coroutine function that records how often it was awaited."""

    def __init__(self, result=None, error=None, gate=None):
        self.result = ['e1'] if result is None else result
        self.error = error
        self.gate = gate
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return QueryCache(stale_seconds=300, gc_seconds=600, clock=clock)


class TestKeys:
    """Test cases for cache key derivation."""

    def test_tile_key_ignores_order_and_duplicates(self):
        assert tile_query_key(['b', 'a', 'b']) == tile_query_key(['a', 'b']) == 'tiles:a,b'

    def test_tile_key_includes_date_range(self):
        date_range = DateRange.from_iso('2024-03-08', '2024-03-10')

        assert tile_query_key(['a'], date_range) == 'tiles:a|2024-03-08..2024-03-10'
        assert tile_query_key(['a'], date_range) != tile_query_key(['a'])

    def test_batch_key_sorted(self):
        assert batch_key(['e2', 'e1']) == batch_key(['e1', 'e2']) == 'batch:e1,e2'

    def test_public_events_key(self):
        assert public_events_key() == 'public:all'
        assert public_events_key(DateRange.from_iso('2024-03-08', '2024-03-08')) == (
            'public:2024-03-08..2024-03-08'
        )


class TestGetOrFetch:
    """Test cases for read-through behaviour."""

    def test_miss_then_hit(self, cache):
        fetch = CountingFetch()

        async def run():
            first = await cache.get_or_fetch('k', fetch)
            second = await cache.get_or_fetch('k', fetch)
            return first, second

        first, second = asyncio.run(run())

        assert first == second == ['e1']
        assert fetch.calls == 1
        assert cache.stats.misses == 1
        assert cache.stats.hits == 1

    def test_concurrent_identical_requests_share_one_fetch(self, cache):
        fetch = CountingFetch()

        async def run():
            return await asyncio.gather(
                cache.get_or_fetch('k', fetch),
                cache.get_or_fetch('k', fetch),
            )

        first, second = asyncio.run(run())

        assert fetch.calls == 1
        assert first is second
        assert cache.stats.coalesced == 1

    def test_different_keys_fetch_separately(self, cache):
        fetch = CountingFetch()

        async def run():
            await asyncio.gather(
                cache.get_or_fetch('a', fetch),
                cache.get_or_fetch('b', fetch),
            )

        asyncio.run(run())

        assert fetch.calls == 2
        assert len(cache) == 2

    def test_stale_entry_refetched(self, cache, clock):
        fetch = CountingFetch()

        async def run():
            await cache.get_or_fetch('k', fetch)
            clock.advance(299)
            await cache.get_or_fetch('k', fetch)
            clock.advance(1)
            await cache.get_or_fetch('k', fetch)

        asyncio.run(run())

        assert fetch.calls == 2

    def test_failures_not_cached(self, cache):
        failing = CountingFetch(error=NetworkError("boom"))
        working = CountingFetch()

        async def run():
            with pytest.raises(NetworkError):
                await cache.get_or_fetch('k', failing)
            return await cache.get_or_fetch('k', working)

        assert asyncio.run(run()) == ['e1']
        assert failing.calls == 1
        assert working.calls == 1

    def test_coalesced_callers_all_see_failure(self, cache):
        fetch = CountingFetch(error=NetworkError("boom"))

        async def run():
            return await asyncio.gather(
                cache.get_or_fetch('k', fetch),
                cache.get_or_fetch('k', fetch),
                return_exceptions=True,
            )

        results = asyncio.run(run())

        assert fetch.calls == 1
        assert all(isinstance(result, NetworkError) for result in results)
        assert 'k' not in cache

    def test_uncacheable_result_returned_but_not_stored(self, cache):
        fetch = CountingFetch(result=['partial'])

        async def run():
            return await cache.get_or_fetch('k', fetch, cacheable=lambda r: False)

        assert asyncio.run(run()) == ['partial']
        assert 'k' not in cache


class TestLifecycle:
    """Test cases for eviction, clear and init."""

    def test_unused_entries_collected(self, cache, clock):
        async def run():
            await cache.get_or_fetch('old', CountingFetch())
            clock.advance(400)
            await cache.get_or_fetch('new', CountingFetch())
            clock.advance(200)

        asyncio.run(run())

        assert cache.collect_garbage() == 1
        assert 'old' not in cache
        assert 'new' in cache

    def test_reads_keep_entries_alive(self, cache, clock):
        async def run():
            await cache.get_or_fetch('k', CountingFetch())

        asyncio.run(run())
        clock.advance(250)
        assert cache.get('k') == ['e1']
        clock.advance(500)

        assert cache.collect_garbage() == 0
        assert 'k' in cache

    def test_clear_drops_entries(self, cache):
        async def run():
            await cache.get_or_fetch('k', CountingFetch())

        asyncio.run(run())
        cache.clear()

        assert len(cache) == 0
        assert cache.get('k') is None

    def test_clear_during_fetch_does_not_repopulate(self, cache):
        async def run():
            gate = asyncio.Event()
            fetch = CountingFetch(gate=gate)
            pending = asyncio.ensure_future(cache.get_or_fetch('k', fetch))
            await asyncio.sleep(0)
            cache.clear()
            gate.set()
            return await pending

        assert asyncio.run(run()) == ['e1']
        assert 'k' not in cache

    def test_init_resets_stats(self, cache):
        async def run():
            await cache.get_or_fetch('k', CountingFetch())

        asyncio.run(run())
        cache.init()

        assert len(cache) == 0
        assert cache.stats.misses == 0

    def test_invalidate(self, cache):
        async def run():
            await cache.get_or_fetch('k', CountingFetch())

        asyncio.run(run())

        assert cache.invalidate('k') is True
        assert cache.invalidate('k') is False
