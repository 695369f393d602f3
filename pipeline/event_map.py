"""Viewport to events pipeline: tile, dedupe, enrich."""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from client.batch_enricher import BatchEnricher
from client.spatial_index import SpatialIndexClient
from geo.geohash_tiler import TILE_PRECISION, tiles_for_center
from processor.errors import EventMapError
from processor.models import DateRange, EventRecord, Viewport

logger = logging.getLogger(__name__)


class MapPhase(str, Enum):
    IDLE = 'idle'
    TILING = 'tiling'
    DEDUPED = 'deduped'
    ENRICHING = 'enriching'
    READY = 'ready'
    PARTIALLY_READY = 'partially_ready'
    ERRORED = 'errored'


LOADING_PHASES = (MapPhase.TILING, MapPhase.DEDUPED, MapPhase.ENRICHING)


@dataclass(frozen=True)
class MapRequest:
    """Identity of one load: a viewport and the date window applied to it."""
    viewport: Viewport
    date_range: Optional[DateRange] = None


@dataclass(frozen=True)
class MapSnapshot:
    """What the map shows at one point of a load."""
    phase: MapPhase
    request: Optional[MapRequest] = None
    events: List[EventRecord] = field(default_factory=list)
    error: Optional[EventMapError] = None

    @property
    def is_loading(self) -> bool:
        return self.phase in LOADING_PHASES

    @property
    def is_error(self) -> bool:
        return self.phase == MapPhase.ERRORED

    @property
    def is_empty(self) -> bool:
        """Settled with nothing to show. Not an error."""
        return self.phase == MapPhase.READY and not self.events


class EventMapLoader:
    """
    Loads the events visible around a viewport.

    Each load runs in two strictly ordered phases: the viewport's 9 tiles are
    queried and deduplicated, then the surviving ids are enriched in one
    batch. Only the most recent request may update the map; a load whose
    request has been superseded by the time one of its phases resolves is
    dropped and returns None.
    """

    def __init__(
        self,
        spatial_index: SpatialIndexClient,
        enricher: BatchEnricher,
        precision: int = TILE_PRECISION,
        on_change: Optional[Callable[[MapSnapshot], None]] = None,
    ):
        """
        Initialize the loader.

        Args:
            spatial_index: Tile fan-out client
            enricher: Batch enrichment client
            precision: Geohash precision of the tiles
            on_change: Called with every new snapshot
        """
        self.spatial_index = spatial_index
        self.enricher = enricher
        self.precision = precision
        self.on_change = on_change
        self.snapshot = MapSnapshot(phase=MapPhase.IDLE)
        self._latest: Optional[MapRequest] = None

    async def load(
        self,
        viewport: Viewport,
        date_range: Optional[DateRange] = None,
    ) -> Optional[MapSnapshot]:
        """
        Load the events for ``viewport``.

        Args:
            viewport: Map viewport to load
            date_range: Optional date window

        Returns:
            The settled snapshot (READY, PARTIALLY_READY or ERRORED), or
            None if a newer request superseded this one
        """
        tiles = tiles_for_center(viewport.center, self.precision)
        request = MapRequest(viewport=viewport, date_range=date_range)
        self._latest = request

        self._emit(MapSnapshot(phase=MapPhase.TILING, request=request))
        try:
            tile_result = await self.spatial_index.find_event_ids(tiles, date_range)
        except EventMapError as e:
            return self._fail(request, e)

        if self._is_stale(request):
            return None

        partial = tile_result.partial_failure
        event_ids = tile_result.event_ids
        self._emit(MapSnapshot(phase=MapPhase.DEDUPED, request=request, error=partial))

        if not event_ids:
            logger.info("No events in viewport")
            return self._emit(self._settled(request, [], partial))

        self._emit(MapSnapshot(phase=MapPhase.ENRICHING, request=request, error=partial))
        try:
            events = await self.enricher.enrich(event_ids)
        except EventMapError as e:
            return self._fail(request, e)

        if self._is_stale(request):
            return None

        logger.info(
            f"Loaded {len(events)} events for viewport",
            extra={'tiles': len(tiles), 'ids': len(event_ids)},
        )
        return self._emit(self._settled(request, events, partial))

    def _settled(
        self,
        request: MapRequest,
        events: List[EventRecord],
        partial: Optional[EventMapError],
    ) -> MapSnapshot:
        phase = MapPhase.PARTIALLY_READY if partial else MapPhase.READY
        return MapSnapshot(phase=phase, request=request, events=events, error=partial)

    def _fail(self, request: MapRequest, error: EventMapError) -> Optional[MapSnapshot]:
        if self._is_stale(request):
            return None
        logger.error(f"Event map load failed: {error}", extra={'error_type': type(error).__name__})
        return self._emit(MapSnapshot(phase=MapPhase.ERRORED, request=request, error=error))

    def _is_stale(self, request: MapRequest) -> bool:
        if request == self._latest:
            return False
        logger.debug("Discarding result for superseded viewport")
        return True

    def _emit(self, snapshot: MapSnapshot) -> MapSnapshot:
        self.snapshot = snapshot
        if self.on_change is not None:
            self.on_change(snapshot)
        return snapshot
