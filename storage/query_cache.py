"""In-memory read-through cache for event queries."""
import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from processor.models import DateRange

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached value and its freshness bookkeeping."""
    key: str
    value: Any
    expires_at: float
    last_accessed: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    coalesced: int = 0


def tile_query_key(tiles: Iterable[str], date_range: Optional[DateRange] = None) -> str:
    """Key for a tile fan-out: the sorted tile set plus the date window."""
    key = 'tiles:' + ','.join(sorted(set(tiles)))
    if date_range:
        params = date_range.to_query_params()
        key += f"|{params['startDate']}..{params['endDate']}"
    return key


def batch_key(event_ids: Iterable[str]) -> str:
    """Key for a batch enrichment: the sorted id list."""
    return 'batch:' + ','.join(sorted(event_ids))


def public_events_key(date_range: Optional[DateRange] = None) -> str:
    if not date_range:
        return 'public:all'
    params = date_range.to_query_params()
    return f"public:{params['startDate']}..{params['endDate']}"


class QueryCache:
    """
    Short-TTL cache shared by the spatial index client and the enricher.

    Entries are fresh for ``stale_seconds`` after they were fetched and are
    evicted once nobody has read them for ``gc_seconds``. Identical requests
    made while a fetch is in flight share that fetch instead of issuing
    their own.

    Must be used from a single event loop.
    """

    DEFAULT_STALE_SECONDS = 5 * 60
    DEFAULT_GC_SECONDS = 10 * 60

    def __init__(
        self,
        stale_seconds: float = DEFAULT_STALE_SECONDS,
        gc_seconds: float = DEFAULT_GC_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            stale_seconds: How long a fetched value is served without refetching
            gc_seconds: How long an unread entry is kept before eviction
            clock: Monotonic time source in seconds, injectable for tests
        """
        self.stale_seconds = stale_seconds
        self.gc_seconds = gc_seconds
        self._clock = clock
        self._generation = 0
        self.init()

    def init(self) -> 'QueryCache':
        """Reset storage, pending fetches and statistics."""
        self._entries: Dict[str, CacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._generation += 1
        self.stats = CacheStats()
        return self

    def clear(self) -> None:
        """
        Drop every entry.

        Fetches already in flight still deliver their results to waiting
        callers but no longer populate the cache.
        """
        count = len(self._entries)
        self._entries.clear()
        self._in_flight.clear()
        self._generation += 1
        logger.debug(f"Cleared {count} cache entries")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[Any]:
        """Return the value for ``key`` if it is cached and fresh."""
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= now:
            return None
        entry.last_accessed = now
        return entry.value

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def collect_garbage(self) -> int:
        """
        Evict entries not read within the GC window.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - self.gc_seconds
        expired = [key for key, entry in self._entries.items() if entry.last_accessed <= cutoff]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} unused cache entries")
        return len(expired)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        cacheable: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Return the cached value for ``key``, fetching it on a miss.

        Args:
            key: Canonical cache key
            fetch: Coroutine function producing the value
            cacheable: Optional predicate; results it rejects are returned
                but not stored

        Returns:
            The cached or freshly fetched value

        Raises:
            Whatever ``fetch`` raises; failures are never cached
        """
        self.collect_garbage()

        value = self.get(key)
        if value is not None:
            self.stats.hits += 1
            logger.debug(f"Cache hit: {key}")
            return value

        pending = self._in_flight.get(key)
        if pending is not None:
            self.stats.coalesced += 1
            logger.debug(f"Joining in-flight request: {key}")
            return await asyncio.shield(pending)

        self.stats.misses += 1
        logger.debug(f"Cache miss: {key}")
        task = asyncio.ensure_future(fetch())
        self._in_flight[key] = task
        task.add_done_callback(
            functools.partial(self._settle, key, self._generation, cacheable)
        )
        return await asyncio.shield(task)

    def _settle(
        self,
        key: str,
        generation: int,
        cacheable: Optional[Callable[[Any], bool]],
        task: asyncio.Future,
    ) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Fetch failed, not caching {key}: {error}")
            return
        if generation != self._generation:
            return

        value = task.result()
        if cacheable is not None and not cacheable(value):
            logger.debug(f"Result not cacheable: {key}")
            return

        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            expires_at=now + self.stale_seconds,
            last_accessed=now,
        )
