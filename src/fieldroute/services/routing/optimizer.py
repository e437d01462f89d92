"""Single-crew tour construction: nearest neighbour followed by bounded 2-opt."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ...config import settings
from ...errors import InputError, ProviderError
from ...models.domain import Coordinate, Customer
from ..geospatial import distance_km
from .travel import (
    Leg,
    StraightLineTravelProvider,
    TravelMatrix,
    TravelTimeProvider,
    call_with_timeout,
)

logger = logging.getLogger(__name__)

IMPROVEMENT_EPSILON = 1e-9


@dataclass(slots=True)
class OptimizedRoute:
    """Visit order for one crew plus the legs base -> stops -> base."""

    customers: list[Customer]
    legs: list[Leg] = field(default_factory=list)
    degraded: bool = False
    provider: str = ""
    iterations: int = 0

    @property
    def total_duration_minutes(self) -> float:
        return sum(leg.duration_minutes for leg in self.legs)

    @property
    def total_distance_meters(self) -> float:
        return sum(leg.distance_meters for leg in self.legs)


def _tour_cost(table: TravelMatrix, tour: Sequence[int]) -> float:
    return sum(table.durations[a][b] for a, b in zip(tour, tour[1:]))


def _nearest_neighbor(table: TravelMatrix, count: int) -> list[int]:
    """Greedy tour from the base (node 0) over nodes 1..count.

    Nodes are numbered in customer-id order and only a strictly shorter leg
    replaces the current best, so ties go to the lower customer id.
    """
    unvisited = list(range(1, count + 1))
    tour: list[int] = []
    current = 0
    while unvisited:
        best = unvisited[0]
        best_cost = table.durations[current][best]
        for node in unvisited[1:]:
            cost = table.durations[current][node]
            if cost < best_cost:
                best, best_cost = node, cost
        tour.append(best)
        unvisited.remove(best)
        current = best
    return tour


def _two_opt(table: TravelMatrix, tour: list[int], max_iterations: int) -> tuple[list[int], int]:
    """Reverse segments while that shortens the closed tour, up to ``max_iterations`` moves."""
    route = [0, *tour, 0]
    durations = table.durations
    iterations = 0
    improved = True
    while improved and iterations < max_iterations:
        improved = False
        for i in range(1, len(route) - 2):
            for k in range(i + 1, len(route) - 1):
                before, first, last, after = route[i - 1], route[i], route[k], route[k + 1]
                forward = sum(durations[route[j]][route[j + 1]] for j in range(i, k))
                backward = sum(durations[route[j + 1]][route[j]] for j in range(i, k))
                delta = (
                    durations[before][last]
                    + durations[first][after]
                    + backward
                    - durations[before][first]
                    - durations[last][after]
                    - forward
                )
                if delta < -IMPROVEMENT_EPSILON:
                    route[i : k + 1] = reversed(route[i : k + 1])
                    iterations += 1
                    improved = True
                    break
            if improved:
                break
    return route[1:-1], iterations


def _straight_line_legs(base: Coordinate, customers: Sequence[Customer]) -> list[Leg]:
    estimate = StraightLineTravelProvider().route(base, [c.location for c in customers])
    return list(estimate.legs)


def fallback_order(base: Coordinate, customers: Sequence[Customer]) -> list[Customer]:
    """Ascending straight-line distance from the base, ties by customer id."""
    return sorted(customers, key=lambda c: (distance_km(base, c.location), c.customer_id))


def optimize_route(
    base: Coordinate,
    customers: Sequence[Customer],
    provider: TravelTimeProvider | None = None,
    *,
    max_iterations: int | None = None,
    timeout: float | None = None,
) -> OptimizedRoute:
    """Order ``customers`` into a closed tour starting and ending at ``base``.

    Zero or one customer never touches the provider. For two or more the
    provider's matrix is requested once; if that fails or times out the
    customers are ordered by distance from the base and the result is
    flagged ``degraded``.
    """
    seen: set[str] = set()
    for customer in customers:
        if customer.customer_id in seen:
            raise InputError(f"Customer {customer.customer_id} appears more than once in the stop list.")
        seen.add(customer.customer_id)

    ordered = sorted(customers, key=lambda c: c.customer_id)
    if not ordered:
        return OptimizedRoute(customers=[])
    if len(ordered) == 1:
        return OptimizedRoute(
            customers=ordered,
            legs=_straight_line_legs(base, ordered),
            provider=StraightLineTravelProvider.name,
        )

    provider = provider or StraightLineTravelProvider()
    budget = settings.two_opt_max_iterations if max_iterations is None else max_iterations
    points = [base, *(c.location for c in ordered)]

    try:
        table = call_with_timeout(lambda: provider.matrix(points), timeout)
        if table.size != len(points):
            raise ProviderError(f"Expected a {len(points)}x{len(points)} matrix, got {table.size}x{table.size}")
    except ProviderError as exc:
        logger.warning(f"Travel-time provider unavailable ({exc}); ordering {len(ordered)} stops by distance from base")
        degraded = fallback_order(base, ordered)
        return OptimizedRoute(
            customers=degraded,
            legs=_straight_line_legs(base, degraded),
            degraded=True,
            provider=StraightLineTravelProvider.name,
        )

    tour = _nearest_neighbor(table, len(ordered))
    greedy_cost = _tour_cost(table, [0, *tour, 0])
    tour, iterations = _two_opt(table, tour, budget)
    final_cost = _tour_cost(table, [0, *tour, 0])
    logger.debug(
        f"Optimized {len(ordered)} stops with {provider.name}: "
        f"{greedy_cost:.1f} -> {final_cost:.1f} min after {iterations} 2-opt moves"
    )
    return OptimizedRoute(
        customers=[ordered[node - 1] for node in tour],
        legs=table.legs([0, *tour, 0]),
        provider=provider.name,
        iterations=iterations,
    )
