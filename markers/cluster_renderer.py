"""Visual policy for event and venue pins and clusters."""
from typing import Dict, List, Tuple

from processor.errors import ValidationError
from processor.models import ClusterDescriptor, EventRecord, GeoPoint, MarkerType

# Small, medium and large tiers
PALETTES: Dict[MarkerType, Tuple[str, str, str]] = {
    MarkerType.EVENT: ('#F97316', '#EA580C', '#C2410C'),
    MarkerType.VENUE: ('#FF1493', '#E0115F', '#C71585'),
}

MEDIUM_TIER_MIN = 10
LARGE_TIER_MIN = 50

MIN_CLUSTER_SIZE = 18
CLUSTER_SIZE_PER_ITEM = 3
FADED_OPACITY = 0.6


def _check(marker_type: MarkerType, count: int) -> MarkerType:
    try:
        marker_type = MarkerType(marker_type)
    except ValueError:
        raise ValidationError(f"Unknown marker type: {marker_type!r}")
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError(f"Count must be an integer, got {count!r}")
    if count < 0:
        raise ValidationError(f"Count must be non-negative, got {count}")
    return marker_type


def tier_color(marker_type: MarkerType, count: int) -> str:
    """Palette colour for ``count`` items of ``marker_type``."""
    marker_type = _check(marker_type, count)
    small, medium, large = PALETTES[marker_type]
    if count < MEDIUM_TIER_MIN:
        return small
    if count < LARGE_TIER_MIN:
        return medium
    return large


def describe_cluster(marker_type: MarkerType, count: int) -> ClusterDescriptor:
    """
    Describe a cluster icon aggregating ``count`` markers.

    Args:
        marker_type: Marker family of the clustered pins
        count: Number of markers in the cluster

    Returns:
        ClusterDescriptor with the tier colour, the count as its label and
        a size hint that grows with the count

    Raises:
        ValidationError: If the type is unknown or the count is negative
    """
    marker_type = _check(marker_type, count)
    return ClusterDescriptor(
        type=marker_type,
        count=count,
        color=tier_color(marker_type, count),
        label=str(count),
        shape='cluster',
        size=max(count * CLUSTER_SIZE_PER_ITEM, MIN_CLUSTER_SIZE),
    )


def describe_marker(marker_type: MarkerType, count: int) -> ClusterDescriptor:
    """
    Describe a single pin standing for ``count`` events.

    Pins only show a badge for more than one event. A venue with no current
    events keeps its pin but is faded.
    """
    marker_type = _check(marker_type, count)
    faded = marker_type == MarkerType.VENUE and count == 0
    return ClusterDescriptor(
        type=marker_type,
        count=count,
        color=tier_color(marker_type, count),
        label=str(count) if count > 1 else None,
        opacity=FADED_OPACITY if faded else 1.0,
    )


def location_key(point: GeoPoint) -> str:
    return f"{point.lat},{point.lng}"


def group_events_by_location(events: List[EventRecord]) -> Dict[str, List[EventRecord]]:
    """Group events sharing exact coordinates, in first-seen order."""
    groups: Dict[str, List[EventRecord]] = {}
    for event in events:
        groups.setdefault(location_key(event.location), []).append(event)
    return groups


def build_event_markers(
    events: List[EventRecord],
) -> List[Tuple[GeoPoint, List[EventRecord], ClusterDescriptor]]:
    """
    One pin per distinct location, badged with the number of events there.

    Args:
        events: Enriched events to place on the map

    Returns:
        (location, events at that location, descriptor) tuples
    """
    markers = []
    for group in group_events_by_location(events).values():
        location = group[0].location
        markers.append((location, group, describe_marker(MarkerType.EVENT, len(group))))
    return markers
