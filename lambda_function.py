"""AWS Lambda handler for the live event map."""
import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, Optional

from client.batch_enricher import BatchEnricher
from client.event_api import EventApiClient
from client.postcode_lookup import PostcodeLookup
from client.spatial_index import SpatialIndexClient
from geo.distance import DISTANCE_OPTIONS
from geo.location import DEFAULT_CENTER, resolve_center
from markers.cluster_renderer import build_event_markers
from pipeline.event_list import EventListLoader
from pipeline.event_map import EventMapLoader
from processor.date_ranges import get_date_range
from processor.errors import NetworkError, ValidationError
from processor.event_processor import EventProcessor
from processor.models import DateRange, GeoPoint, Viewport
from storage.query_cache import QueryCache

VIEWS = ('map', 'list')

# Survives across warm invocations of the same container
_cache: Optional[QueryCache] = None


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def get_cache(stale_seconds: float, gc_seconds: float) -> QueryCache:
    """Return the process-wide query cache, creating it on first use."""
    global _cache
    if _cache is None:
        _cache = QueryCache(stale_seconds=stale_seconds, gc_seconds=gc_seconds)
    return _cache


def parse_center(params: Dict[str, str], lookup: PostcodeLookup) -> GeoPoint:
    """
    Resolve the map center from ``lat``/``lng``, else ``postcode``, else the default.

    Raises:
        ValidationError: If only one of lat/lng is given or they are invalid
    """
    lat, lng = params.get('lat'), params.get('lng')
    if lat is not None or lng is not None:
        if lat is None or lng is None:
            raise ValidationError("Both lat and lng are required")
        return GeoPoint(lat=lat, lng=lng)

    postcode = params.get('postcode')
    if postcode:
        return resolve_center(lambda: lookup.locate(postcode))
    return DEFAULT_CENTER


def parse_date_range(params: Dict[str, str]) -> Optional[DateRange]:
    """Date window from ``filter``, else ``startDate``/``endDate``, else None."""
    if params.get('filter'):
        return get_date_range(params['filter'])

    start, end = params.get('startDate'), params.get('endDate')
    if start or end:
        if not (start and end):
            raise ValidationError("Both startDate and endDate are required")
        return DateRange.from_iso(start, end)
    return None


def parse_radius(params: Dict[str, str], default: float) -> float:
    value = params.get('radius')
    if value is None:
        return default
    try:
        radius = float(value)
    except ValueError:
        raise ValidationError(f"Radius must be numeric, got {value!r}")
    if radius not in DISTANCE_OPTIONS:
        raise ValidationError(f"Radius must be one of {DISTANCE_OPTIONS} miles, got {value!r}")
    return radius


def _error_response(
    status_code: int,
    message: str,
    error: Exception,
    start_time: float,
) -> Dict[str, Any]:
    duration = time.time() - start_time
    return {
        'statusCode': status_code,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(duration, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the live event map.

    Args:
        event: API Gateway proxy event; options come from queryStringParameters
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body of events and markers
    """
    # Read configuration from environment variables
    api_base_url = os.environ.get('API_BASE_URL', EventApiClient.BASE_URL)
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = float(os.environ.get('TIMEOUT_SECONDS', '10'))
    max_retries = int(os.environ.get('MAX_RETRIES', '2'))
    stale_seconds = float(os.environ.get('CACHE_STALE_SECONDS', '300'))
    gc_seconds = float(os.environ.get('CACHE_GC_SECONDS', '600'))
    default_radius = float(os.environ.get('DEFAULT_RADIUS_MILES', '50'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    params = (event or {}).get('queryStringParameters') or {}
    logger.info(
        "Lambda execution started",
        extra={
            'api_base_url': api_base_url,
            'timeout_seconds': timeout_seconds,
            'params': params
        }
    )

    try:
        view = params.get('view', 'map')
        if view not in VIEWS:
            raise ValidationError(f"Unknown view: {view!r}")

        cache = get_cache(stale_seconds, gc_seconds)
        api = EventApiClient(
            base_url=api_base_url,
            timeout=timeout_seconds,
            max_retries=max_retries,
        )
        processor = EventProcessor()

        center = parse_center(params, PostcodeLookup(timeout=timeout_seconds))
        date_range = parse_date_range(params)

        failed_tiles = []
        if view == 'map':
            loader = EventMapLoader(
                SpatialIndexClient(api, cache, processor, timeout=timeout_seconds),
                BatchEnricher(api, cache, processor, timeout=timeout_seconds),
            )
            snapshot = asyncio.run(loader.load(Viewport(center=center), date_range))
            if snapshot.is_error:
                raise snapshot.error
            events = snapshot.events
            status = snapshot.phase.value
            if snapshot.error is not None:
                failed_tiles = sorted(snapshot.error.failed_tiles)
            markers = [
                {
                    'location': location.to_dict(),
                    'eventIds': [e.id for e in group],
                    'icon': descriptor.to_dict()
                }
                for location, group, descriptor in build_event_markers(events)
            ]
        else:
            radius = parse_radius(params, default_radius)
            list_loader = EventListLoader(api, cache, processor, timeout=timeout_seconds)
            events = asyncio.run(list_loader.load(date_range, center, radius))
            status = 'ready'
            markers = []

    except ValidationError as e:
        logger.warning(f"Invalid request: {str(e)}")
        return _error_response(400, 'Invalid request', e, start_time)

    except NetworkError as e:
        logger.error(
            f"Failed to load events: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response(502, 'Failed to load events', e, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response(500, 'Event load failed', e, start_time)

    duration = time.time() - start_time
    logger.info(
        "Lambda execution completed successfully",
        extra={
            'view': view,
            'status': status,
            'events': len(events),
            'failed_tiles': failed_tiles,
            'duration_seconds': round(duration, 2)
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Events loaded successfully',
            'view': view,
            'status': status,
            'center': center.to_dict(),
            'dateRange': date_range.to_query_params() if date_range else None,
            'events': [e.to_dict() for e in events],
            'markers': markers,
            'failedTiles': failed_tiles,
            'duration_seconds': round(duration, 2)
        })
    }
