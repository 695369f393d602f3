"""Map center resolution with a fixed fallback."""
import logging
from typing import Callable, Dict, Optional

from processor.errors import LocationUnavailable, NetworkError, ValidationError
from processor.models import GeoPoint

logger = logging.getLogger(__name__)

CITY_LOCATIONS: Dict[str, GeoPoint] = {
    'stoke-on-trent': GeoPoint(lat=53.0027, lng=-2.1794),
    'stockport': GeoPoint(lat=53.4106, lng=-2.1584),
}

DEFAULT_CENTER = CITY_LOCATIONS['stoke-on-trent']

LocationProvider = Callable[[], Optional[GeoPoint]]


def resolve_center(
    provider: Optional[LocationProvider] = None,
    default: GeoPoint = DEFAULT_CENTER,
) -> GeoPoint:
    """
    Ask the location provider for a position, falling back to a default.

    Denied or unavailable locations never block the map: the provider may
    return None or raise LocationUnavailable, NetworkError or
    ValidationError, and the default center is used instead.

    Args:
        provider: Callable returning the device position, or None
        default: Center to use when no position is available

    Returns:
        The provider's position or the default center
    """
    if provider is None:
        return default

    try:
        position = provider()
    except (LocationUnavailable, NetworkError, ValidationError) as e:
        logger.warning(f"Location unavailable, using default center: {e}")
        return default

    if position is None:
        logger.warning("Location provider returned no position, using default center")
        return default
    return position
