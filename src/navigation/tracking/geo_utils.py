# geo_utils.py
# Pure mathematical / geographic helper functions.
# No side effects; depends only on models and errors.

import math
from numbers import Real
from typing import Optional, Sequence, Tuple, Type

from .errors import InvalidCoordinateError
from .models import Coord


EARTH_RADIUS_M = 6_371_000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in metres.

    Args:
        lat1, lon1: Origin in decimal degrees.
        lat2, lon2: Destination in decimal degrees.

    Returns:
        Distance in metres.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Coord, b: Coord) -> float:
    """Great-circle distance between two coordinates in metres."""
    return haversine_distance(a.lat, a.lon, b.lat, b.lon)


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Forward azimuth (bearing) from point 1 to point 2 in degrees [0, 360).

    Identical points give 0.

    Args:
        lat1, lon1: Origin in decimal degrees.
        lat2, lon2: Destination in decimal degrees.

    Returns:
        Bearing in degrees.
    """
    rlat1, rlon1 = math.radians(lat1), math.radians(lon1)
    rlat2, rlon2 = math.radians(lat2), math.radians(lon2)
    d_lon = rlon2 - rlon1
    y = math.sin(d_lon) * math.cos(rlat2)
    x = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(d_lon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def path_length(points: Sequence[Coord]) -> float:
    """Sum of consecutive great-circle distances along a path, in metres."""
    return sum(distance_between(a, b) for a, b in zip(points, points[1:]))


def nearest_point_index(points: Sequence[Coord], target: Coord) -> Tuple[Optional[int], float]:
    """
    Index of the path point closest to target (linear scan, first wins on ties).

    Returns:
        (index, distance_m); index is None for an empty path.
    """
    best_i = None
    best_d = float("inf")
    for i, p in enumerate(points):
        d = distance_between(p, target)
        if d < best_d:
            best_d = d
            best_i = i
    return best_i, best_d


def point_along(a: Coord, b: Coord, fraction: float) -> Coord:
    """Linear interpolation between two nearby coordinates."""
    return Coord(
        a.lat + (b.lat - a.lat) * fraction,
        a.lon + (b.lon - a.lon) * fraction,
    )


def points_every(points: Sequence[Coord], interval_m: float) -> list:
    """
    Coordinates spaced interval_m apart along a path (distance markers).

    Returns:
        List of (distance_m, Coord) tuples, excluding the start of the path.
    """
    if interval_m <= 0 or len(points) < 2:
        return []

    markers = []
    next_mark = interval_m
    travelled = 0.0
    for a, b in zip(points, points[1:]):
        seg = distance_between(a, b)
        while seg > 0 and travelled + seg >= next_mark:
            markers.append((next_mark, point_along(a, b, (next_mark - travelled) / seg)))
            next_mark += interval_m
        travelled += seg
    return markers


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def is_finite_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def validate_coordinate(
    lat,
    lon,
    error_cls: Type[InvalidCoordinateError] = InvalidCoordinateError,
) -> None:
    """
    Raise error_cls unless lat/lon form a finite, in-range pair.

    Args:
        lat, lon:  Candidate coordinate in decimal degrees.
        error_cls: Exception type to raise (InvalidFixError, InvalidWaypointError...).
    """
    if not is_finite_number(lat) or not is_finite_number(lon):
        raise error_cls(f"Coordinate must be finite numbers, got ({lat!r}, {lon!r})")
    if not -90.0 <= lat <= 90.0:
        raise error_cls(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise error_cls(f"Longitude {lon} outside [-180, 180]")
