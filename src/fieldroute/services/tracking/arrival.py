"""Geofenced arrival detection from reported crew positions."""

from __future__ import annotations

from typing import Optional, Sequence

from ...config import settings
from ...models.domain import Coordinate, DailyRoute, Stop
from ..geospatial import distance_km


def distance_meters(position: Coordinate, stop: Stop) -> float:
    return distance_km(position, stop.location) * 1000.0


def detect_arrival(position: Coordinate, stop: Stop, threshold_meters: float | None = None) -> bool:
    """True when ``position`` lies within the arrival radius of ``stop``."""
    threshold = settings.arrival_threshold_meters if threshold_meters is None else threshold_meters
    return distance_meters(position, stop) <= threshold


def nearest_stop(position: Coordinate, stops: Sequence[Stop]) -> Optional[tuple[Stop, float]]:
    """Closest stop to ``position`` and its distance in meters. Ties keep the earlier stop."""
    best: Optional[tuple[Stop, float]] = None
    for stop in stops:
        meters = distance_meters(position, stop)
        if best is None or meters < best[1]:
            best = (stop, meters)
    return best


def auto_detect_arrival(
    route: DailyRoute,
    position: Coordinate,
    threshold_meters: float | None = None,
) -> Optional[Stop]:
    """The next pending stop if the crew has just reached it.

    Nothing is detected while another stop is still in progress, and only
    the next stop in sequence can be arrived at.
    """
    ordered = sorted(route.stops, key=lambda s: s.sequence)
    if any(stop.status == "in_progress" for stop in ordered):
        return None
    upcoming = next((stop for stop in ordered if stop.status == "pending"), None)
    if upcoming is None:
        return None
    if detect_arrival(position, upcoming, threshold_meters):
        return upcoming
    return None
