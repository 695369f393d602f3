"""Great-circle distance utilities for location-based filtering."""
import math
from typing import List, Optional

from processor.errors import ValidationError
from processor.models import EventRecord, GeoPoint

EARTH_RADIUS_MILES = 3959

# Radius choices offered by the list view, in miles
DISTANCE_OPTIONS = (5, 10, 25, 50)
DEFAULT_RADIUS_MILES = 50


def haversine_miles(point1: GeoPoint, point2: GeoPoint) -> float:
    """
    Calculate the distance between two points using the Haversine formula.

    Args:
        point1: First location
        point2: Second location

    Returns:
        Distance in miles
    """
    d_lat = math.radians(point2.lat - point1.lat)
    d_lng = math.radians(point2.lng - point1.lng)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(point1.lat)) * math.cos(math.radians(point2.lat))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def round_distance(miles: float) -> float:
    return round(miles, 1)


def format_distance(miles: float) -> str:
    """Format a distance for display, e.g. "< 0.1 mi", "0.4 mi", "12 mi"."""
    if miles < 0.1:
        return "< 0.1 mi"
    if miles < 1:
        return f"{miles:.1f} mi"
    return f"{round(miles)} mi"


def filter_by_radius(
    events: List[EventRecord],
    center: Optional[GeoPoint],
    radius_miles: float,
) -> List[EventRecord]:
    """
    Keep events within ``radius_miles`` of ``center``.

    Without a center this is the identity: the input list itself is
    returned. Order is preserved.

    Args:
        events: Events to filter
        center: Point to measure from, or None
        radius_miles: Inclusive radius in miles

    Returns:
        Events whose distance to center is at most the radius

    Raises:
        ValidationError: If the radius is negative or not finite
    """
    if center is None:
        return events

    try:
        radius = float(radius_miles)
    except (TypeError, ValueError):
        raise ValidationError(f"Radius must be numeric, got {radius_miles!r}")
    if not math.isfinite(radius) or radius < 0:
        raise ValidationError(f"Radius must be a non-negative finite number, got {radius_miles!r}")

    return [
        event for event in events
        if haversine_miles(center, event.location) <= radius
    ]
