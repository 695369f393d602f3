"""Unit tests for EventMapLoader."""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from geo.geohash_tiler import tiles_for_center
from pipeline.event_map import EventMapLoader, MapPhase, MapSnapshot
from processor.errors import (
    NetworkError,
    PartialFailure,
    RequestTimeout,
    TilesUnavailable,
)
from processor.models import (
    DateRange,
    EventRecord,
    EventSummary,
    GeoPoint,
    Ticketing,
    TileQueryResult,
    VenueRef,
    Viewport,
)

BIRMINGHAM = Viewport(center=GeoPoint(lat=52.48, lng=-1.90))
STOKE = Viewport(center=GeoPoint(lat=53.0027, lng=-2.1794))


def make_record(event_id):
    return EventRecord(
        id=event_id,
        title=f'Gig {event_id}',
        date='2024-03-08',
        start_time='20:00',
        end_time=None,
        venue=VenueRef(id='v-1', name='Venue'),
        artist=None,
        location=GeoPoint(lat=52.48, lng=-1.90),
        ticketing=Ticketing(),
        status='approved',
        source='bndy.live',
        created_at=None,
        updated_at=None,
    )


def tile_result(ids, failures=None):
    tiles = tiles_for_center(BIRMINGHAM.center)
    return TileQueryResult(
        tiles=tiles,
        summaries=[EventSummary(event_id) for event_id in ids],
        failures=failures or {},
    )


@pytest.fixture
def spatial_index():
    spatial = Mock()
    spatial.find_event_ids = AsyncMock(return_value=tile_result(['e1', 'e2']))
    return spatial


@pytest.fixture
def enricher():
    batch = Mock()
    batch.enrich = AsyncMock(return_value=[make_record('e1'), make_record('e2')])
    return batch


@pytest.fixture
def snapshots():
    return []


@pytest.fixture
def loader(spatial_index, enricher, snapshots):
    return EventMapLoader(spatial_index, enricher, on_change=snapshots.append)


def phases(snapshots):
    return [snapshot.phase for snapshot in snapshots]


class TestLoad:
    """Test cases for a single load."""

    def test_initial_state_is_idle(self, loader):
        assert loader.snapshot.phase == MapPhase.IDLE
        assert not loader.snapshot.is_loading

    def test_successful_load(self, loader, spatial_index, enricher, snapshots):
        date_range = DateRange.from_iso('2024-03-08', '2024-03-10')

        result = asyncio.run(loader.load(BIRMINGHAM, date_range))

        assert result.phase == MapPhase.READY
        assert [event.id for event in result.events] == ['e1', 'e2']
        assert result.error is None
        assert phases(snapshots) == [
            MapPhase.TILING,
            MapPhase.DEDUPED,
            MapPhase.ENRICHING,
            MapPhase.READY,
        ]
        assert all(snapshot.is_loading for snapshot in snapshots[:3])
        spatial_index.find_event_ids.assert_awaited_once_with(
            tiles_for_center(BIRMINGHAM.center), date_range
        )
        enricher.enrich.assert_awaited_once_with(['e1', 'e2'])
        assert loader.snapshot is result

    def test_no_events_is_ready_and_empty(self, loader, spatial_index, enricher, snapshots):
        spatial_index.find_event_ids.return_value = tile_result([])

        result = asyncio.run(loader.load(BIRMINGHAM))

        assert result.phase == MapPhase.READY
        assert result.is_empty
        assert not result.is_error
        assert phases(snapshots) == [MapPhase.TILING, MapPhase.DEDUPED, MapPhase.READY]
        enricher.enrich.assert_not_awaited()

    def test_partial_tile_failure(self, loader, spatial_index):
        tiles = tiles_for_center(BIRMINGHAM.center)
        spatial_index.find_event_ids.return_value = tile_result(
            ['e1', 'e2'], failures={tiles[2]: NetworkError("down", target=tiles[2])}
        )

        result = asyncio.run(loader.load(BIRMINGHAM))

        assert result.phase == MapPhase.PARTIALLY_READY
        assert isinstance(result.error, PartialFailure)
        assert result.error.failed_tiles == [tiles[2]]
        assert len(result.events) == 2
        assert not result.is_error

    def test_total_tile_failure(self, loader, spatial_index, enricher):
        spatial_index.find_event_ids.side_effect = TilesUnavailable({'gcqdf1': NetworkError("x")})

        result = asyncio.run(loader.load(BIRMINGHAM))

        assert result.phase == MapPhase.ERRORED
        assert result.is_error
        assert isinstance(result.error, TilesUnavailable)
        enricher.enrich.assert_not_awaited()

    def test_enrichment_failure(self, loader, enricher, snapshots):
        enricher.enrich.side_effect = RequestTimeout("slow")

        result = asyncio.run(loader.load(BIRMINGHAM))

        assert result.phase == MapPhase.ERRORED
        assert isinstance(result.error, RequestTimeout)
        assert phases(snapshots)[-2:] == [MapPhase.ENRICHING, MapPhase.ERRORED]

    def test_unexpected_errors_propagate(self, loader, spatial_index):
        spatial_index.find_event_ids.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            asyncio.run(loader.load(BIRMINGHAM))

    def test_works_without_listener(self, spatial_index, enricher):
        loader = EventMapLoader(spatial_index, enricher)

        result = asyncio.run(loader.load(BIRMINGHAM))

        assert result.phase == MapPhase.READY


class TestLastViewportWins:
    """Test cases for superseded loads."""

    def test_stale_tiling_result_discarded(self, spatial_index, enricher, snapshots):
        birmingham_tiles = tiles_for_center(BIRMINGHAM.center)

        async def run():
            gate = asyncio.Event()

            async def find(tiles, date_range=None):
                if tiles == birmingham_tiles:
                    await gate.wait()
                return TileQueryResult(tiles=tiles, summaries=[EventSummary('e1')])

            spatial_index.find_event_ids.side_effect = find
            loader = EventMapLoader(spatial_index, enricher, on_change=snapshots.append)

            first = asyncio.ensure_future(loader.load(BIRMINGHAM))
            await asyncio.sleep(0)
            second = await loader.load(STOKE)
            gate.set()
            return await first, second, loader

        first, second, loader = asyncio.run(run())

        assert first is None
        assert second.phase == MapPhase.READY
        assert loader.snapshot.request.viewport == STOKE
        assert all(s.request.viewport == STOKE for s in snapshots[1:])
        enricher.enrich.assert_awaited_once()

    def test_stale_enrichment_result_discarded(self, spatial_index, enricher):
        async def run():
            gate = asyncio.Event()
            calls = []

            async def enrich(event_ids):
                calls.append(event_ids)
                if len(calls) == 1:
                    await gate.wait()
                    return [make_record('old')]
                return [make_record('new')]

            enricher.enrich.side_effect = enrich
            loader = EventMapLoader(spatial_index, enricher)

            first = asyncio.ensure_future(loader.load(BIRMINGHAM))
            while not calls:
                await asyncio.sleep(0)
            second = await loader.load(STOKE)
            gate.set()
            return await first, second, loader

        first, second, loader = asyncio.run(run())

        assert first is None
        assert [event.id for event in second.events] == ['new']
        assert [event.id for event in loader.snapshot.events] == ['new']

    def test_stale_failure_discarded(self, spatial_index, enricher):
        async def run():
            gate = asyncio.Event()

            async def find(tiles, date_range=None):
                if not gate.is_set():
                    await gate.wait()
                    raise TilesUnavailable({tiles[0]: NetworkError("down")})
                return TileQueryResult(tiles=tiles, summaries=[])

            spatial_index.find_event_ids.side_effect = find
            loader = EventMapLoader(spatial_index, enricher)

            first = asyncio.ensure_future(loader.load(BIRMINGHAM))
            await asyncio.sleep(0)
            date_range = DateRange.from_iso('2024-03-08', '2024-03-10')
            gate.set()
            second = await loader.load(BIRMINGHAM, date_range)
            return await first, second

        first, second = asyncio.run(run())

        assert first is None
        assert second.phase == MapPhase.READY


class TestMapSnapshot:
    """Test cases for snapshot flags."""

    def test_flags(self):
        assert MapSnapshot(phase=MapPhase.ENRICHING).is_loading
        assert MapSnapshot(phase=MapPhase.ERRORED).is_error
        assert MapSnapshot(phase=MapPhase.READY).is_empty
        assert not MapSnapshot(phase=MapPhase.PARTIALLY_READY).is_empty
