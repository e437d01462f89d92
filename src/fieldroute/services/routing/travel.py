"""Travel-time providers used by the route optimizer.

The optimizer only sees the ``TravelTimeProvider`` contract. One
implementation is backed by an OSRM service, the other is a deterministic
straight-line model used for tests and as the degraded fallback.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

import httpx

from ...config import settings
from ...errors import ProviderError
from ...models.domain import Coordinate
from ..geospatial import distance_km
from .osrm_client import OSRMClient, decode_polyline

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Penalty (minutes) for pairs the routing service reports as unreachable.
UNREACHABLE_MINUTES = 1_000_000.0

_provider_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="travel-provider")


@dataclass(frozen=True, slots=True)
class Leg:
    duration_minutes: float
    distance_meters: float


@dataclass(frozen=True, slots=True)
class TravelEstimate:
    legs: tuple[Leg, ...]
    total_duration_minutes: float
    geometry: tuple[Coordinate, ...] = ()

    @property
    def total_distance_meters(self) -> float:
        return sum(leg.distance_meters for leg in self.legs)


@dataclass(frozen=True, slots=True)
class TravelMatrix:
    """Pairwise travel costs; durations in minutes, distances in meters."""

    durations: tuple[tuple[float, ...], ...]
    distances: tuple[tuple[float, ...], ...]

    def __post_init__(self) -> None:
        size = len(self.durations)
        if len(self.distances) != size or any(len(row) != size for row in (*self.durations, *self.distances)):
            raise ValueError("Travel matrix must be square with matching duration/distance shapes.")

    @property
    def size(self) -> int:
        return len(self.durations)

    def leg(self, origin: int, destination: int) -> Leg:
        return Leg(
            duration_minutes=self.durations[origin][destination],
            distance_meters=self.distances[origin][destination],
        )

    def legs(self, order: Sequence[int]) -> list[Leg]:
        return [self.leg(a, b) for a, b in zip(order, order[1:])]


class TravelTimeProvider(ABC):
    """Contract for anything able to estimate travel between coordinates."""

    name = "provider"

    @abstractmethod
    def matrix(self, points: Sequence[Coordinate]) -> TravelMatrix:
        raise NotImplementedError

    def route(
        self,
        base: Coordinate,
        waypoints: Sequence[Coordinate],
        *,
        return_to_base: bool = True,
    ) -> TravelEstimate:
        """Estimate the legs of ``base -> waypoints... (-> base)`` in the given order."""
        if not waypoints:
            return TravelEstimate(legs=(), total_duration_minutes=0.0)
        table = self.matrix([base, *waypoints])
        order = list(range(len(waypoints) + 1))
        if return_to_base:
            order.append(0)
        legs = tuple(table.legs(order))
        return TravelEstimate(
            legs=legs,
            total_duration_minutes=sum(leg.duration_minutes for leg in legs),
        )


class StraightLineTravelProvider(TravelTimeProvider):
    """Haversine distance at a constant average speed."""

    name = "straight_line"

    def __init__(self, average_speed_kmh: float | None = None) -> None:
        self.average_speed_kmh = average_speed_kmh or settings.average_speed_kmh
        if self.average_speed_kmh <= 0:
            raise ValueError("average_speed_kmh must be positive")

    def matrix(self, points: Sequence[Coordinate]) -> TravelMatrix:
        durations: list[tuple[float, ...]] = []
        distances: list[tuple[float, ...]] = []
        for origin in points:
            km_row = [0.0 if origin is destination else distance_km(origin, destination) for destination in points]
            distances.append(tuple(km * 1000.0 for km in km_row))
            durations.append(tuple(km / self.average_speed_kmh * 60.0 for km in km_row))
        return TravelMatrix(durations=tuple(durations), distances=tuple(distances))


class OSRMTravelProvider(TravelTimeProvider):
    """Road travel times from an OSRM table/route service."""

    name = "osrm"

    def __init__(self, client: OSRMClient | None = None) -> None:
        self.client = client or OSRMClient()

    def matrix(self, points: Sequence[Coordinate]) -> TravelMatrix:
        try:
            payload = self.client.table([point.as_tuple() for point in points])
        except (httpx.HTTPError, ConnectionError, ValueError) as exc:
            raise ProviderError(f"OSRM table request failed: {exc}") from exc

        unreachable = 0
        durations: list[tuple[float, ...]] = []
        distances: list[tuple[float, ...]] = []
        for duration_row, distance_row in zip(payload["durations"], payload["distances"]):
            row_minutes = []
            row_meters = []
            for seconds, meters in zip(duration_row, distance_row):
                if seconds is None or meters is None:
                    unreachable += 1
                    row_minutes.append(UNREACHABLE_MINUTES)
                    row_meters.append(UNREACHABLE_MINUTES * 1000.0)
                else:
                    row_minutes.append(float(seconds) / 60.0)
                    row_meters.append(float(meters))
            durations.append(tuple(row_minutes))
            distances.append(tuple(row_meters))
        if unreachable:
            logger.warning(f"OSRM reported {unreachable} unreachable pairs; penalising them")
        try:
            return TravelMatrix(durations=tuple(durations), distances=tuple(distances))
        except ValueError as exc:
            raise ProviderError(f"OSRM returned a malformed matrix: {exc}") from exc

    def route(
        self,
        base: Coordinate,
        waypoints: Sequence[Coordinate],
        *,
        return_to_base: bool = True,
    ) -> TravelEstimate:
        if not waypoints:
            return TravelEstimate(legs=(), total_duration_minutes=0.0)
        points = [base, *waypoints]
        if return_to_base:
            points.append(base)
        try:
            payload = self.client.route([point.as_tuple() for point in points])
        except (httpx.HTTPError, ConnectionError, ValueError) as exc:
            raise ProviderError(f"OSRM route request failed: {exc}") from exc

        best = payload["routes"][0]
        legs = tuple(
            Leg(duration_minutes=float(leg["duration"]) / 60.0, distance_meters=float(leg["distance"]))
            for leg in best.get("legs", [])
        )
        geometry = best.get("geometry")
        path = tuple(Coordinate(lat, lon) for lat, lon in decode_polyline(geometry)) if isinstance(geometry, str) else ()
        return TravelEstimate(
            legs=legs,
            total_duration_minutes=float(best.get("duration", sum(leg.duration_minutes * 60.0 for leg in legs))) / 60.0,
            geometry=path,
        )


def call_with_timeout(func: Callable[[], T], timeout: float | None = None) -> T:
    """Run a provider call on a worker thread and give up after ``timeout`` seconds.

    Any failure, including the timeout, is raised as ``ProviderError``. A call
    that overruns keeps running in the background; its result is ignored.
    """
    limit = timeout if timeout is not None else settings.provider_timeout_seconds
    future = _provider_executor.submit(func)
    try:
        return future.result(timeout=limit)
    except FuturesTimeoutError as exc:
        future.cancel()
        raise ProviderError(f"Travel-time provider did not answer within {limit:.1f}s") from exc
    except ProviderError:
        raise
    except Exception as exc:
        raise ProviderError(f"Travel-time provider failed: {exc}") from exc


def build_default_provider() -> TravelTimeProvider:
    """OSRM when configured, straight-line estimates otherwise."""
    if settings.osrm_base_url:
        return OSRMTravelProvider()
    logger.info("OSRM base URL not configured; using straight-line travel estimates")
    return StraightLineTravelProvider()
