"""Data models for event map processing."""
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from processor.errors import EventMapError, PartialFailure, ValidationError


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate."""
    lat: float
    lng: float

    def __post_init__(self):
        try:
            lat = float(self.lat)
            lng = float(self.lng)
        except (TypeError, ValueError):
            raise ValidationError(f"Coordinates must be numeric: ({self.lat!r}, {self.lng!r})")
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise ValidationError(f"Coordinates must be finite: ({lat}, {lng})")
        if not -90.0 <= lat <= 90.0:
            raise ValidationError(f"Latitude out of range: {lat}")
        if not -180.0 <= lng <= 180.0:
            raise ValidationError(f"Longitude out of range: {lng}")
        object.__setattr__(self, 'lat', lat)
        object.__setattr__(self, 'lng', lng)

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng}


@dataclass(frozen=True)
class Viewport:
    """Map viewport. Two viewports are the same request when their centers match."""
    center: GeoPoint


@dataclass(frozen=True)
class DateRange:
    """Inclusive date window."""
    start_date: datetime
    end_date: datetime

    def __post_init__(self):
        if not isinstance(self.start_date, datetime) or not isinstance(self.end_date, datetime):
            raise ValidationError("DateRange bounds must be datetime objects")
        if self.start_date > self.end_date:
            raise ValidationError(
                f"DateRange start {self.start_date.isoformat()} is after end "
                f"{self.end_date.isoformat()}"
            )

    @classmethod
    def from_iso(cls, start: str, end: str) -> 'DateRange':
        """
        Build a range from ISO dates, covering both days completely.

        Args:
            start: First day (YYYY-MM-DD)
            end: Last day (YYYY-MM-DD)

        Returns:
            DateRange from midnight of start to end-of-day of end
        """
        try:
            start_date = datetime.strptime(start.strip(), '%Y-%m-%d')
            end_date = datetime.strptime(end.strip(), '%Y-%m-%d')
        except (AttributeError, ValueError):
            raise ValidationError(f"Invalid ISO date range: {start!r} - {end!r}")
        return cls(
            start_date=start_date,
            end_date=end_date.replace(hour=23, minute=59, second=59, microsecond=999000),
        )

    def contains(self, moment: datetime) -> bool:
        return self.start_date <= moment <= self.end_date

    def to_query_params(self) -> Dict[str, str]:
        return {
            'startDate': self.start_date.strftime('%Y-%m-%d'),
            'endDate': self.end_date.strftime('%Y-%m-%d'),
        }

    def describe(self) -> str:
        """Human-readable label, e.g. "Feb 25 - Mar 1"."""
        start = f"{self.start_date:%b} {self.start_date.day}"
        end = f"{self.end_date:%b} {self.end_date.day}"
        if start == end:
            return start
        return f"{start} - {end}"


@dataclass(frozen=True)
class EventSummary:
    """Minimal record returned by a tile query."""
    id: str


@dataclass(frozen=True)
class VenueRef:
    id: str
    name: str
    city: Optional[str] = None


@dataclass(frozen=True)
class ArtistRef:
    id: str
    name: str


@dataclass(frozen=True)
class Ticketing:
    ticketed: bool = False
    price: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class EventRecord:
    """Validated, fully joined event."""
    id: str
    title: str
    date: str
    start_time: str
    end_time: Optional[str]
    venue: VenueRef
    artist: Optional[ArtistRef]
    location: GeoPoint
    ticketing: Ticketing
    status: str
    source: str
    created_at: Optional[str]
    updated_at: Optional[str]
    description: Optional[str] = None
    event_url: Optional[str] = None
    is_open_mic: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire format."""
        item = {
            'id': self.id,
            'title': self.title,
            'date': self.date,
            'startTime': self.start_time,
            'venue': {'id': self.venue.id, 'name': self.venue.name},
            'location': self.location.to_dict(),
            'ticketing': {'ticketed': self.ticketing.ticketed},
            'status': self.status,
            'source': self.source,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'isOpenMic': self.is_open_mic,
        }

        # Add optional fields if present
        if self.end_time:
            item['endTime'] = self.end_time
        if self.venue.city:
            item['venue']['city'] = self.venue.city
        if self.artist:
            item['artist'] = {'id': self.artist.id, 'name': self.artist.name}
        if self.ticketing.price:
            item['ticketing']['price'] = self.ticketing.price
        if self.ticketing.url:
            item['ticketing']['url'] = self.ticketing.url
        if self.description:
            item['description'] = self.description
        if self.event_url:
            item['eventUrl'] = self.event_url

        return item


class MarkerType(str, Enum):
    EVENT = 'event'
    VENUE = 'venue'


@dataclass(frozen=True)
class ClusterDescriptor:
    """Visual policy for one pin or cluster icon, consumed by the map renderer."""
    type: MarkerType
    count: int
    color: str
    label: Optional[str] = None
    opacity: float = 1.0
    shape: str = 'pin'
    size: Optional[int] = None

    @property
    def faded(self) -> bool:
        return self.opacity < 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'count': self.count,
            'color': self.color,
            'label': self.label,
            'opacity': self.opacity,
            'shape': self.shape,
            'size': self.size,
        }


@dataclass
class TileOutcome:
    """Result of querying a single tile: either summaries or an error."""
    tile: str
    summaries: List[EventSummary] = field(default_factory=list)
    error: Optional[EventMapError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TileQueryResult:
    """Merged, deduplicated result of a tile fan-out."""
    tiles: List[str]
    summaries: List[EventSummary]
    failures: Dict[str, EventMapError] = field(default_factory=dict)

    @property
    def event_ids(self) -> List[str]:
        return [summary.id for summary in self.summaries]

    @property
    def succeeded_tiles(self) -> List[str]:
        return [tile for tile in self.tiles if tile not in self.failures]

    @property
    def all_failed(self) -> bool:
        return bool(self.tiles) and len(self.failures) == len(self.tiles)

    @property
    def partial_failure(self) -> Optional[PartialFailure]:
        if not self.failures or self.all_failed:
            return None
        return PartialFailure(dict(self.failures), self.succeeded_tiles)
