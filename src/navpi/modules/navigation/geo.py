"""Spherical-earth helpers. Good enough for driving distances of a few km."""

from __future__ import annotations

import math
from typing import Any, Optional, Tuple

from .models import LatLng

EARTH_RADIUS_M = 6_371_000.0

# Returned instead of raising so threshold comparisons simply fail
INVALID_DISTANCE = math.inf


def _is_coordinate(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def distance(lat1: Any, lng1: Any, lat2: Any, lng2: Any) -> float:
    """Great-circle (haversine) distance in metres.

    Any missing, non-numeric or non-finite coordinate yields
    INVALID_DISTANCE.
    """
    if not all(_is_coordinate(v) for v in (lat1, lng1, lat2, lng2)):
        return INVALID_DISTANCE
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Optional[Any], b: Optional[Any]) -> float:
    """distance() for anything with .lat/.lng (LatLng, Position, RoutePoint)."""
    if a is None or b is None:
        return INVALID_DISTANCE
    return distance(getattr(a, "lat", None), getattr(a, "lng", None),
                    getattr(b, "lat", None), getattr(b, "lng", None))


def interpolate(start: LatLng, end: LatLng, fraction: float) -> Tuple[float, float]:
    # Linear blend in degrees; fine at a few hundred metres
    return (
        start.lat + (end.lat - start.lat) * fraction,
        start.lng + (end.lng - start.lng) * fraction,
    )


def offset(lat: float, lng: float, north_m: float, east_m: float) -> Tuple[float, float]:
    """Shift a point by metres north/east (111111 m per degree of latitude)."""
    new_lat = lat + north_m / 111_111.0
    new_lng = lng + east_m / (111_111.0 * math.cos(math.radians(lat)))
    return new_lat, new_lng
