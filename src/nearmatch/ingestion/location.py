"""
Location sources.

`resolve_location` never blocks on a failing sensor: any error (or no source at
all) yields the explicitly supplied fallback coordinate.
"""

from __future__ import annotations

import logging

from nearmatch.domain.models import GeoPoint
from nearmatch.ingestion.base import LocationSource

logger = logging.getLogger(__name__)


class StaticLocationSource:
    """Always reports the same coordinate (CLI, tests, server-side sessions)."""

    def __init__(self, point: GeoPoint):
        self._point = point

    def current_coordinate(self) -> GeoPoint:
        return self._point


def resolve_location(source: LocationSource | None, fallback: GeoPoint) -> GeoPoint:
    if source is None:
        return fallback
    try:
        point = source.current_coordinate()
    except Exception as exc:
        logger.warning("Location source unavailable (%s); using fallback %.4f,%.4f", exc, fallback.lat, fallback.lon)
        return fallback
    if not isinstance(point, GeoPoint):
        try:
            point = GeoPoint(lat=float(point.lat), lon=float(point.lon))
        except Exception as exc:
            logger.warning("Location source returned an invalid point (%s); using fallback", exc)
            return fallback
    return point
