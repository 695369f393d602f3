"""Event processor for validating and normalizing backend event payloads."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from processor.errors import ValidationError
from processor.models import (
    ArtistRef,
    EventRecord,
    EventSummary,
    GeoPoint,
    Ticketing,
    VenueRef,
)

logger = logging.getLogger(__name__)


class EventProcessor:
    """
    Converts loosely-typed backend records into typed models.

    This is the only place that inspects raw payload fields; everything
    downstream works with EventSummary and EventRecord.
    """

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000
    DEFAULT_TITLE = 'Unnamed Event'
    DEFAULT_STATUS = 'approved'
    DEFAULT_SOURCE = 'bndy.live'

    def process_summaries(self, raw_events: List[Any]) -> List[EventSummary]:
        """
        Extract id-only summaries from a tile query response.

        Args:
            raw_events: Items of the response's ``events`` list

        Returns:
            EventSummary objects in source order
        """
        summaries = []

        for item in raw_events:
            event_id = item.get('id') if isinstance(item, dict) else None
            if not isinstance(event_id, str) or not event_id.strip():
                logger.warning(f"Skipping tile result without a valid id: {item!r}")
                continue
            summaries.append(EventSummary(id=event_id))

        return summaries

    def process_events(self, raw_events: List[Any]) -> List[EventRecord]:
        """
        Process and validate fully joined event records.

        Args:
            raw_events: Event dicts from the batch or broad list endpoint

        Returns:
            List of validated EventRecord objects
        """
        processed_events = []

        for raw in raw_events:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-object event payload: {raw!r}")
                continue
            try:
                record = self._process_single_event(raw)
            except (ValidationError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to process event '{raw.get('id')}': {e}")
                continue
            if record:
                processed_events.append(record)

        logger.info(
            f"Processed {len(processed_events)} valid events out of "
            f"{len(raw_events)} total events"
        )
        return processed_events

    def _process_single_event(self, raw: Dict[str, Any]) -> Optional[EventRecord]:
        """
        Process a single event.

        Args:
            raw: Raw event dict

        Returns:
            EventRecord or None if validation fails
        """
        if not self._validate_required_fields(raw):
            return None

        event_id = str(raw['id']).strip()

        normalized_date = self._normalize_date(str(raw['date']))
        if not normalized_date:
            logger.warning(f"Invalid date format for event '{event_id}': {raw['date']}")
            return None

        normalized_start_time = self._normalize_time(str(raw['startTime']))
        if not normalized_start_time:
            logger.warning(
                f"Invalid start time format for event '{event_id}': {raw['startTime']}"
            )
            return None

        normalized_end_time = None
        if raw.get('endTime'):
            normalized_end_time = self._normalize_time(str(raw['endTime']))

        location = self._extract_location(raw)
        if location is None:
            logger.warning(f"Event '{event_id}' has no usable coordinates")
            return None

        title = str(raw.get('title') or raw.get('name') or '').strip() or self.DEFAULT_TITLE
        description = raw.get('description')
        if description:
            description = str(description)[:self.MAX_DESCRIPTION_LENGTH]

        return EventRecord(
            id=event_id,
            title=title[:self.MAX_TITLE_LENGTH],
            date=normalized_date,
            start_time=normalized_start_time,
            end_time=normalized_end_time,
            venue=self._extract_venue(raw),
            artist=self._extract_artist(raw),
            location=location,
            ticketing=self._extract_ticketing(raw),
            status=raw.get('status') or self.DEFAULT_STATUS,
            source=raw.get('source') or self.DEFAULT_SOURCE,
            created_at=raw.get('createdAt'),
            updated_at=raw.get('updatedAt'),
            description=description or None,
            event_url=raw.get('eventUrl'),
            is_open_mic=bool(raw.get('isOpenMic', False)),
        )

    def _validate_required_fields(self, raw: Dict[str, Any]) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            raw: Raw event dict

        Returns:
            True if valid, False otherwise
        """
        for field_name in ('id', 'date', 'startTime'):
            value = raw.get(field_name)
            if value is None or not str(value).strip():
                logger.warning(
                    f"Event '{raw.get('id')}' missing required field: {field_name}"
                )
                return False

        return True

    def _extract_location(self, raw: Dict[str, Any]) -> Optional[GeoPoint]:
        location = raw.get('location')
        if isinstance(location, dict):
            lat, lng = location.get('lat'), location.get('lng')
        else:
            lat, lng = raw.get('geoLat'), raw.get('geoLng')

        if lat is None or lng is None:
            return None
        return GeoPoint(lat=lat, lng=lng)

    def _extract_venue(self, raw: Dict[str, Any]) -> VenueRef:
        venue = raw.get('venue')
        if isinstance(venue, dict):
            return VenueRef(
                id=str(venue.get('id') or ''),
                name=venue.get('name') or '',
                city=venue.get('city') or None,
            )
        return VenueRef(
            id=str(raw.get('venueId') or ''),
            name=raw.get('venueName') or '',
            city=raw.get('venueCity') or None,
        )

    def _extract_artist(self, raw: Dict[str, Any]) -> Optional[ArtistRef]:
        artist = raw.get('artist')
        if isinstance(artist, dict) and artist.get('id'):
            return ArtistRef(id=str(artist['id']), name=artist.get('name') or '')

        artist_id = raw.get('artistId')
        if not artist_id and raw.get('artistIds'):
            artist_id = raw['artistIds'][0]
        if not artist_id:
            return None
        return ArtistRef(id=str(artist_id), name=raw.get('artistName') or '')

    def _extract_ticketing(self, raw: Dict[str, Any]) -> Ticketing:
        ticketing = raw.get('ticketing')
        if isinstance(ticketing, dict):
            return Ticketing(
                ticketed=bool(ticketing.get('ticketed', False)),
                price=ticketing.get('price') or None,
                url=ticketing.get('url') or None,
            )
        price = raw.get('ticketPrice') or raw.get('ticketinformation') or None
        url = raw.get('ticketUrl') or None
        ticketed = raw.get('ticketed')
        if ticketed is None:
            ticketed = bool(price or url)
        return Ticketing(ticketed=bool(ticketed), price=price, url=url)

    def _normalize_date(self, date_str: str) -> Optional[str]:
        """
        Normalize date to ISO 8601 format (YYYY-MM-DD).

        Args:
            date_str: Date string in various formats

        Returns:
            ISO 8601 formatted date string or None if parsing fails
        """
        value = date_str.strip()
        # Full timestamps such as 2024-01-15T19:00:00.000Z
        if 'T' in value:
            value = value.split('T', 1)[0]

        date_formats = [
            '%Y-%m-%d',      # ISO 8601
            '%d/%m/%Y',      # UK format
            '%d-%m-%Y',      # UK format with dashes
            '%d %B %Y',      # Full month name
            '%d %b %Y',      # Abbreviated month name
            '%Y/%m/%d',      # Alternative ISO format
        ]

        for fmt in date_formats:
            try:
                date_obj = datetime.strptime(value, fmt)
                return date_obj.strftime('%Y-%m-%d')
            except ValueError:
                continue

        return None

    def _normalize_time(self, time_str: str) -> Optional[str]:
        """
        Normalize time to 24-hour format (HH:MM).

        Args:
            time_str: Time string in various formats

        Returns:
            24-hour formatted time string or None if parsing fails
        """
        time_formats = [
            '%H:%M',         # 24-hour format
            '%I:%M %p',      # 12-hour format with AM/PM
            '%I:%M%p',       # 12-hour format without space
            '%H:%M:%S',      # 24-hour with seconds
            '%I:%M:%S %p',   # 12-hour with seconds and AM/PM
        ]

        time_str = time_str.strip()

        for fmt in time_formats:
            try:
                time_obj = datetime.strptime(time_str, fmt)
                return time_obj.strftime('%H:%M')
            except ValueError:
                continue

        return None
