import math
import threading

import pytest

from src.fieldroute.errors import InputError, ProviderError
from src.fieldroute.models.domain import Coordinate, Customer, ServiceDescriptor
from src.fieldroute.services.routing.optimizer import _tour_cost, _two_opt, optimize_route
from src.fieldroute.services.routing.travel import TravelMatrix, TravelTimeProvider


def _customer(cid: str, lat: float, lon: float) -> Customer:
    return Customer(
        customer_id=cid,
        company_id="acme",
        name=f"Customer {cid}",
        address="",
        location=Coordinate(lat, lon),
        services=[ServiceDescriptor(service_type="mowing")],
    )


def _euclidean_matrix(points) -> TravelMatrix:
    rows = tuple(
        tuple(math.dist(a.as_tuple(), b.as_tuple()) for b in points)
        for a in points
    )
    return TravelMatrix(durations=rows, distances=tuple(tuple(v * 1000 for v in row) for row in rows))


class EuclideanProvider(TravelTimeProvider):
    name = "euclidean"

    def __init__(self):
        self.calls = 0

    def matrix(self, points):
        self.calls += 1
        return _euclidean_matrix(points)


class FailingProvider(TravelTimeProvider):
    name = "failing"

    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    def matrix(self, points):
        self.calls += 1
        raise self.exc


class BlockingProvider(TravelTimeProvider):
    name = "blocking"

    def __init__(self):
        self.release = threading.Event()

    def matrix(self, points):
        self.release.wait(2.0)
        return _euclidean_matrix(points)


BASE = Coordinate(0.0, 0.0)


def test_three_customer_scenario_orders_a_b_c():
    provider = EuclideanProvider()
    customers = [_customer("C", 1, 0), _customer("B", 0, 2), _customer("A", 0, 1)]

    result = optimize_route(BASE, customers, provider)

    assert [c.customer_id for c in result.customers] == ["A", "B", "C"]
    assert result.degraded is False
    assert provider.calls == 1
    assert len(result.legs) == 4
    assert result.total_duration_minutes == pytest.approx(3 + math.sqrt(5))


def test_every_customer_visited_exactly_once():
    provider = EuclideanProvider()
    customers = [_customer(f"C{i:02d}", (i * 7) % 5 + 0.5, (i * 3) % 4 + 0.5) for i in range(12)]

    result = optimize_route(BASE, customers, provider)

    ids = [c.customer_id for c in result.customers]
    assert sorted(ids) == sorted(c.customer_id for c in customers)
    assert len(ids) == len(set(ids))
    assert len(result.legs) == len(customers) + 1


def test_empty_and_single_customer_routes_skip_the_provider():
    provider = EuclideanProvider()

    empty = optimize_route(BASE, [], provider)
    single = optimize_route(BASE, [_customer("A", 0.1, 0.1)], provider)

    assert empty.customers == [] and empty.legs == []
    assert [c.customer_id for c in single.customers] == ["A"]
    assert len(single.legs) == 2
    assert single.legs[0].distance_meters == pytest.approx(single.legs[1].distance_meters)
    assert provider.calls == 0


def test_duplicate_customer_ids_are_rejected():
    with pytest.raises(InputError):
        optimize_route(BASE, [_customer("A", 0, 1), _customer("A", 0, 2)], EuclideanProvider())


@pytest.mark.parametrize("exc", [ProviderError("osrm down"), RuntimeError("boom")])
def test_provider_failure_falls_back_to_distance_from_base(exc):
    provider = FailingProvider(exc)
    customers = [_customer("B", 0, 2), _customer("C", 1, 0), _customer("A", 0, 1)]

    result = optimize_route(BASE, customers, provider)

    assert result.degraded is True
    assert provider.calls == 1
    assert [c.customer_id for c in result.customers] == ["A", "C", "B"]
    assert len(result.legs) == 4
    assert result.provider == "straight_line"


def test_provider_timeout_degrades_instead_of_blocking():
    provider = BlockingProvider()
    customers = [_customer("A", 0, 1), _customer("B", 0, 2)]
    try:
        result = optimize_route(BASE, customers, provider, timeout=0.05)
    finally:
        provider.release.set()

    assert result.degraded is True
    assert [c.customer_id for c in result.customers] == ["A", "B"]


def test_two_opt_untangles_crossed_tour():
    points = [Coordinate(0, 0), Coordinate(0, 1), Coordinate(1, 1), Coordinate(1, 0)]
    table = _euclidean_matrix(points)
    crossed = [2, 1, 3]

    improved, iterations = _two_opt(table, crossed, max_iterations=50)

    assert iterations >= 1
    assert _tour_cost(table, [0, *improved, 0]) == pytest.approx(4.0)


def test_two_opt_respects_iteration_budget():
    points = [Coordinate(0, 0), Coordinate(0, 1), Coordinate(1, 1), Coordinate(1, 0)]
    table = _euclidean_matrix(points)

    unchanged, iterations = _two_opt(table, [2, 1, 3], max_iterations=0)

    assert unchanged == [2, 1, 3]
    assert iterations == 0
