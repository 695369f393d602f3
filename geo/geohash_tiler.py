"""
Geohash tiling for viewport queries.

A viewport is covered by the geohash cell containing its center plus the
8 surrounding cells. Tiling is computed from the center only: an event whose
own cell lies outside this 3x3 window is not found, even when it is close
to the center.
"""
from typing import Dict, List, Tuple

import pygeohash as pgh

from processor.errors import ValidationError
from processor.models import GeoPoint

# ~1.2km x 0.6km cells
TILE_PRECISION = 6

# (name, lat step, lng step), clockwise from north
NEIGHBOR_OFFSETS: Tuple[Tuple[str, int, int], ...] = (
    ('n', 1, 0),
    ('ne', 1, 1),
    ('e', 0, 1),
    ('se', -1, 1),
    ('s', -1, 0),
    ('sw', -1, -1),
    ('w', 0, -1),
    ('nw', 1, -1),
)


def _check_precision(precision: int) -> None:
    if not isinstance(precision, int) or not 1 <= precision <= 12:
        raise ValidationError(f"Geohash precision must be an integer in 1..12, got {precision!r}")


def encode_cell(center: GeoPoint, precision: int = TILE_PRECISION) -> str:
    """
    Encode a point to its geohash cell.

    Args:
        center: Point to encode
        precision: Geohash length in characters

    Returns:
        Geohash token
    """
    _check_precision(precision)
    return pgh.encode(center.lat, center.lng, precision=precision)


def _wrap_longitude(lng: float) -> float:
    return ((lng + 180.0) % 360.0) - 180.0


def _shifted_point(lat: float, lng: float) -> Tuple[float, float]:
    # Crossing a pole lands on the opposite meridian
    if lat > 90.0:
        lat, lng = 180.0 - lat, lng + 180.0
    elif lat < -90.0:
        lat, lng = -180.0 - lat, lng + 180.0
    return lat, _wrap_longitude(lng)


def neighbor_cells(cell: str) -> Dict[str, str]:
    """
    Get the 8 neighbouring cells of a geohash.

    Args:
        cell: Center geohash

    Returns:
        Mapping of direction (n, ne, e, se, s, sw, w, nw) to geohash
    """
    if not cell or not isinstance(cell, str):
        raise ValidationError(f"Invalid geohash: {cell!r}")
    try:
        lat, lng, lat_err, lng_err = pgh.decode_exactly(cell)
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Invalid geohash {cell!r}: {e}")

    lat_step, lng_step = 2 * lat_err, 2 * lng_err
    neighbors = {}
    for direction, d_lat, d_lng in NEIGHBOR_OFFSETS:
        n_lat, n_lng = _shifted_point(lat + d_lat * lat_step, lng + d_lng * lng_step)
        neighbors[direction] = pgh.encode(n_lat, n_lng, precision=len(cell))
    return neighbors


def tiles_for_center(center: GeoPoint, precision: int = TILE_PRECISION) -> List[str]:
    """
    Compute the 9 tiles covering a viewport.

    Args:
        center: Viewport center
        precision: Geohash length in characters

    Returns:
        Center cell followed by its 8 neighbours, all distinct
    """
    center_cell = encode_cell(center, precision)
    return [center_cell, *neighbor_cells(center_cell).values()]
