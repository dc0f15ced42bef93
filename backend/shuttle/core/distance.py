"""Great-circle distance along a driver's pickup sequence."""

import logging
import math
from collections.abc import Sequence

from shuttle.core.errors import InvalidCoordinate

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

Coord = tuple[float, float]  # (lat, lon)


def _check(point: Coord) -> None:
    lat, lon = point
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidCoordinate(f"Coordinate out of range: ({lat}, {lon})")


def haversine_km(p1: Coord, p2: Coord) -> float:
    """Distance in kilometers between two (lat, lon) points."""
    lat1, lon1 = map(math.radians, p1)
    lat2, lon2 = map(math.radians, p2)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.asin(math.sqrt(a))


def compute_route_distance(
    driver_start: Coord,
    stops: Sequence[Coord],
    school: Coord,
) -> float:
    """Total path length driver_start -> stops[0] -> ... -> stops[-1] -> school.

    Stops are visited in the given order; no re-ordering is attempted.
    """
    path = [driver_start, *stops, school]
    for point in path:
        _check(point)

    total = sum(haversine_km(a, b) for a, b in zip(path, path[1:]))
    logger.debug("Route distance over %d stops: %.3f km", len(stops), total)
    return total
