"""Concurrent geohash tile queries against the spatial event index."""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from client.event_api import EventApiClient
from client.workers import call_with_timeout, worker_pool
from processor.errors import EventMapError, RequestTimeout, TilesUnavailable
from processor.event_processor import EventProcessor
from processor.models import DateRange, EventSummary, TileOutcome, TileQueryResult
from storage.query_cache import QueryCache, tile_query_key

logger = logging.getLogger(__name__)


def merge_tile_outcomes(outcomes: List[TileOutcome]) -> TileQueryResult:
    """
    Merge per-tile results, keeping the first occurrence of each event id.

    Args:
        outcomes: One outcome per queried tile

    Returns:
        TileQueryResult with every id exactly once and the failed tiles
    """
    seen: Dict[str, EventSummary] = {}
    failures: Dict[str, EventMapError] = {}

    for outcome in outcomes:
        if not outcome.ok:
            failures[outcome.tile] = outcome.error
            continue
        for summary in outcome.summaries:
            if summary.id not in seen:
                seen[summary.id] = summary

    return TileQueryResult(
        tiles=[outcome.tile for outcome in outcomes],
        summaries=list(seen.values()),
        failures=failures,
    )


class SpatialIndexClient:
    """Fans a viewport's tiles out to the index service and merges the ids."""

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        api: EventApiClient,
        cache: QueryCache,
        processor: Optional[EventProcessor] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the client.

        Args:
            api: Blocking HTTP client for the index endpoint
            cache: Shared query cache
            processor: Converts raw tile items into EventSummary objects
            timeout: Upper bound in seconds for each tile query
        """
        self.api = api
        self.cache = cache
        self.processor = processor or EventProcessor()
        self.timeout = timeout

    async def find_event_ids(
        self,
        tiles: List[str],
        date_range: Optional[DateRange] = None,
    ) -> TileQueryResult:
        """
        Query every tile concurrently and merge the results.

        A failing tile never discards the others: when only some tiles fail
        the merged result carries a ``partial_failure`` and is not cached.

        Args:
            tiles: Geohash cells to query
            date_range: Optional date window applied to every tile

        Returns:
            Deduplicated TileQueryResult

        Raises:
            TilesUnavailable: If every tile query failed
        """
        key = tile_query_key(tiles, date_range)
        result = await self.cache.get_or_fetch(
            key,
            lambda: self._query_tiles(tiles, date_range),
            cacheable=lambda r: not r.failures,
        )

        if result.all_failed:
            logger.error(f"All {len(tiles)} tile queries failed")
            raise TilesUnavailable(result.failures)
        if result.failures:
            logger.warning(
                f"{len(result.failures)} of {len(tiles)} tile queries failed",
                extra={'failed_tiles': sorted(result.failures)},
            )
        return result

    async def _query_tiles(
        self,
        tiles: List[str],
        date_range: Optional[DateRange],
    ) -> TileQueryResult:
        logger.info(f"Querying {len(tiles)} tiles")
        with worker_pool(len(tiles), 'tile-query') as executor:
            outcomes = await asyncio.gather(
                *(self._query_tile(executor, tile, date_range) for tile in tiles)
            )
        result = merge_tile_outcomes(list(outcomes))
        logger.info(
            f"Merged {len(result.summaries)} unique events from "
            f"{len(tiles) - len(result.failures)} tiles"
        )
        return result

    async def _query_tile(
        self,
        executor: ThreadPoolExecutor,
        tile: str,
        date_range: Optional[DateRange],
    ) -> TileOutcome:
        try:
            raw_events = await call_with_timeout(
                executor, self.timeout, self.api.fetch_tile_events, tile, date_range
            )
        except asyncio.TimeoutError:
            error = RequestTimeout(f"Tile query timed out after {self.timeout}s", target=tile)
            logger.warning(f"Tile {tile} failed: {error}")
            return TileOutcome(tile=tile, error=error)
        except EventMapError as e:
            logger.warning(f"Tile {tile} failed: {e}")
            return TileOutcome(tile=tile, error=e)

        return TileOutcome(tile=tile, summaries=self.processor.process_summaries(raw_events))
