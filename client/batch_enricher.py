"""Resolve deduplicated event ids into full records with one batched request."""
import asyncio
import logging
from typing import List, Optional

from client.event_api import EventApiClient
from client.workers import call_with_timeout, worker_pool
from processor.errors import RequestTimeout
from processor.event_processor import EventProcessor
from processor.models import EventRecord
from storage.query_cache import QueryCache, batch_key

logger = logging.getLogger(__name__)


class BatchEnricher:
    """Joins event ids with venue and artist data via the batch endpoint."""

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        api: EventApiClient,
        cache: QueryCache,
        processor: Optional[EventProcessor] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.api = api
        self.cache = cache
        self.processor = processor or EventProcessor()
        self.timeout = timeout

    async def enrich(self, event_ids: List[str]) -> List[EventRecord]:
        """
        Fetch full records for ``event_ids``.

        Args:
            event_ids: Deduplicated ids from the tile query

        Returns:
            Valid records for the ids the backend knows; unknown ids are omitted

        Raises:
            RequestTimeout: If the batch request exceeded the timeout
            NetworkError: For other transport failures
        """
        if not event_ids:
            return []

        return await self.cache.get_or_fetch(
            batch_key(event_ids),
            lambda: self._fetch(list(event_ids)),
        )

    async def _fetch(self, event_ids: List[str]) -> List[EventRecord]:
        logger.info(f"Enriching {len(event_ids)} events")
        try:
            with worker_pool(1, 'batch-enrich') as executor:
                raw_events = await call_with_timeout(
                    executor, self.timeout, self.api.fetch_events_batch, event_ids
                )
        except asyncio.TimeoutError as e:
            raise RequestTimeout(
                f"Batch request timed out after {self.timeout}s",
                target=EventApiClient.BATCH_PATH,
            ) from e

        records = self.processor.process_events(raw_events)

        returned = {record.id for record in records}
        missing = [event_id for event_id in event_ids if event_id not in returned]
        if missing:
            logger.debug(f"{len(missing)} ids not returned by batch request: {missing}")

        return records
