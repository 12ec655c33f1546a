"""
Geodistance helpers.

Every proximity rule in the engine (visibility radius, per-post counts, marker
clustering) goes through `haversine_m`, so there is exactly one notion of
"how far apart" in the codebase.
"""

from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points.

    Identical points return exactly 0.0. `h` is clamped to [0, 1] so rounding
    near the antipode cannot push `asin` out of its domain.
    """
    if a.lat == b.lat and a.lon == b.lon:
        return 0.0

    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_M * asin(sqrt(h))


def distance_between(a, b) -> float:
    """Distance in meters between any two objects exposing `lat`/`lon`."""
    return haversine_m(GeoPoint(lat=float(a.lat), lon=float(a.lon)), GeoPoint(lat=float(b.lat), lon=float(b.lon)))


def mean_point(points: list) -> GeoPoint:
    """Arithmetic mean of `lat`/`lon` over a non-empty list of points."""
    if not points:
        raise ValueError("mean_point requires at least one point")
    n = len(points)
    return GeoPoint(
        lat=sum(float(p.lat) for p in points) / n,
        lon=sum(float(p.lon) for p in points) / n,
    )
