"""Broad event list narrowed by distance from a center."""
import asyncio
import logging
from typing import List, Optional

from client.event_api import EventApiClient
from client.workers import call_with_timeout, worker_pool
from geo.distance import DEFAULT_RADIUS_MILES, filter_by_radius
from processor.errors import RequestTimeout
from processor.event_processor import EventProcessor
from processor.models import DateRange, EventRecord, GeoPoint
from storage.query_cache import QueryCache, public_events_key

logger = logging.getLogger(__name__)


class RadiusFilter:
    """
    Memoised ``filter_by_radius``.

    Returns the previous result when the event list (the same list object),
    the center and the radius are all unchanged.
    """

    def __init__(self):
        self._last_events: Optional[List[EventRecord]] = None
        self._last_center: Optional[GeoPoint] = None
        self._last_radius: Optional[float] = None
        self._last_result: Optional[List[EventRecord]] = None
        self.computations = 0

    def __call__(
        self,
        events: List[EventRecord],
        center: Optional[GeoPoint],
        radius_miles: float,
    ) -> List[EventRecord]:
        if (
            self._last_result is not None
            and events is self._last_events
            and center == self._last_center
            and radius_miles == self._last_radius
        ):
            return self._last_result

        result = filter_by_radius(events, center, radius_miles)
        self.computations += 1
        self._last_events = events
        self._last_center = center
        self._last_radius = radius_miles
        self._last_result = result
        return result


class EventListLoader:
    """Loads the public event list for the list view."""

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        api: EventApiClient,
        cache: QueryCache,
        processor: Optional[EventProcessor] = None,
        timeout: float = DEFAULT_TIMEOUT,
        radius_filter: Optional[RadiusFilter] = None,
    ):
        self.api = api
        self.cache = cache
        self.processor = processor or EventProcessor()
        self.timeout = timeout
        self.radius_filter = radius_filter or RadiusFilter()

    async def load(
        self,
        date_range: Optional[DateRange] = None,
        center: Optional[GeoPoint] = None,
        radius_miles: float = DEFAULT_RADIUS_MILES,
    ) -> List[EventRecord]:
        """
        Fetch public events and keep those within the radius.

        Args:
            date_range: Optional date window
            center: Point to measure from; None keeps every event
            radius_miles: Inclusive radius in miles

        Returns:
            Events in backend order

        Raises:
            ValidationError: If the radius is invalid
            NetworkError: If the list could not be fetched
        """
        events = await self.cache.get_or_fetch(
            public_events_key(date_range),
            lambda: self._fetch(date_range),
        )
        nearby = self.radius_filter(events, center, radius_miles)
        logger.info(f"{len(nearby)} of {len(events)} events within {radius_miles} miles")
        return nearby

    async def _fetch(self, date_range: Optional[DateRange]) -> List[EventRecord]:
        try:
            with worker_pool(1, 'event-list') as executor:
                raw_events = await call_with_timeout(
                    executor, self.timeout, self.api.fetch_public_events, date_range
                )
        except asyncio.TimeoutError as e:
            raise RequestTimeout(
                f"Event list request timed out after {self.timeout}s",
                target=EventApiClient.PUBLIC_PATH,
            ) from e
        return self.processor.process_events(raw_events)
