import threading
import time
from dataclasses import replace
from datetime import date, datetime

import pytest

from src.fieldroute.errors import ConcurrencyConflict
from src.fieldroute.models.domain import Coordinate, DailyRoute, Stop
from src.fieldroute.services.routing.cache import RouteCache, make_cache_key

TODAY = date(2024, 6, 10)


def _route(company, crew, day, cache_key, stops=()) -> DailyRoute:
    return DailyRoute(
        route_id=f"{company}_{crew}_{day.isoformat()}",
        company_id=company,
        crew_id=crew,
        service_date=day,
        stops=tuple(stops),
        path=(),
        total_distance_km=0.0,
        travel_minutes=0.0,
        estimated_duration_minutes=0.0,
        created_at=datetime(2024, 6, 10, 7, 0),
        cache_key=cache_key,
    )


class CountingBuilder:
    def __init__(self, gate: threading.Event | None = None):
        self.calls = 0
        self.gate = gate
        self._lock = threading.Lock()

    def __call__(self, company_id, crew_id, service_date, due_customer_ids, cache_key):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(2.0)
        return _route(company_id, crew_id, service_date, cache_key)


def test_cache_key_ignores_customer_order():
    assert make_cache_key("acme", "crew-a", TODAY, ["B", "A"]) == make_cache_key("acme", "crew-a", TODAY, ["A", "B"])
    assert make_cache_key("acme", "crew-a", TODAY, ["A"]) != make_cache_key("acme", "crew-b", TODAY, ["A"])


def test_repeated_requests_reuse_cached_route():
    builder = CountingBuilder()
    cache = RouteCache(builder, today=lambda: TODAY)

    first = cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B"})
    second = cache.get_or_compute("acme", "crew-a", TODAY, ["B", "A"])

    assert first is second
    assert builder.calls == 1
    assert len(cache) == 1


def test_concurrent_requests_for_same_key_run_one_build():
    gate = threading.Event()
    builder = CountingBuilder(gate)
    cache = RouteCache(builder, today=lambda: TODAY)
    barrier = threading.Barrier(6)
    results = []

    def request():
        barrier.wait()
        results.append(cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B", "C"}))

    threads = [threading.Thread(target=request) for _ in range(6)]
    for thread in threads:
        thread.start()
    # let every thread reach the cache before the single build finishes
    threading.Timer(0.2, gate.set).start()
    for thread in threads:
        thread.join(5)

    assert builder.calls == 1
    assert len(results) == 6
    assert all(route is results[0] for route in results)


def test_failed_build_is_not_cached_and_can_be_retried():
    attempts = {"count": 0}

    def flaky(company_id, crew_id, service_date, due_customer_ids, cache_key):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("optimizer crashed")
        return _route(company_id, crew_id, service_date, cache_key)

    cache = RouteCache(flaky, today=lambda: TODAY)

    with pytest.raises(RuntimeError):
        cache.get_or_compute("acme", "crew-a", TODAY, {"A"})
    route = cache.get_or_compute("acme", "crew-a", TODAY, {"A"})

    assert route.crew_id == "crew-a"
    assert attempts["count"] == 2


def test_changed_due_set_evicts_previous_entry():
    builder = CountingBuilder()
    cache = RouteCache(builder, today=lambda: TODAY)

    old = cache.get_or_compute("acme", "crew-a", TODAY, {"A"})
    new = cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B"})

    assert old.cache_key != new.cache_key
    assert len(cache) == 1
    assert cache.current_route("acme", "crew-a", TODAY) is new


def test_result_for_superseded_key_is_returned_but_not_stored():
    gate = threading.Event()
    slow = CountingBuilder(gate)
    cache = RouteCache(today=lambda: TODAY)
    stale_result = []

    worker = threading.Thread(
        target=lambda: stale_result.append(cache.get_or_compute("acme", "crew-a", TODAY, {"A"}, slow))
    )
    worker.start()
    while slow.calls == 0:
        time.sleep(0.01)

    fresh = cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B"}, CountingBuilder())
    gate.set()
    worker.join(5)

    assert stale_result and stale_result[0].cache_key != fresh.cache_key
    assert cache.current_route("acme", "crew-a", TODAY) is fresh
    assert len(cache) == 1


def test_entries_older_than_retention_window_are_purged():
    clock = {"today": date(2024, 6, 1)}
    cache = RouteCache(CountingBuilder(), retention_days=2, today=lambda: clock["today"])

    cache.get_or_compute("acme", "crew-a", date(2024, 6, 1), {"A"})
    clock["today"] = date(2024, 6, 3)
    cache.get_or_compute("acme", "crew-a", date(2024, 6, 3), {"A"})
    assert len(cache) == 2

    clock["today"] = date(2024, 6, 4)
    cache.get_or_compute("acme", "crew-a", date(2024, 6, 4), {"A"})

    assert len(cache) == 2
    assert cache.current_route("acme", "crew-a", date(2024, 6, 1)) is None


def _stop(customer_id, sequence, **fields) -> Stop:
    return Stop(
        customer_id=customer_id,
        customer_name=customer_id,
        address="",
        location=Coordinate(40.0, -75.0),
        sequence=sequence,
        **fields,
    )


class StopsBuilder:
    def __call__(self, company_id, crew_id, service_date, due_customer_ids, cache_key):
        stops = [_stop(cid, seq) for seq, cid in enumerate(sorted(due_customer_ids), start=1)]
        return _route(company_id, crew_id, service_date, cache_key, stops)


def test_update_replaces_current_route():
    cache = RouteCache(CountingBuilder(), today=lambda: TODAY)
    route = cache.get_or_compute("acme", "crew-a", TODAY, {"A"})
    updated = _route("acme", "crew-a", TODAY, route.cache_key)

    result = cache.update("acme", "crew-a", TODAY, lambda current: updated)

    assert result is updated
    assert cache.current_route("acme", "crew-a", TODAY) is updated


def test_update_without_current_route_is_a_conflict():
    cache = RouteCache(CountingBuilder(), today=lambda: TODAY)

    with pytest.raises(ConcurrencyConflict):
        cache.update("acme", "crew-a", TODAY, lambda current: current)


def test_concurrent_updates_are_applied_in_turn():
    cache = RouteCache(StopsBuilder(), today=lambda: TODAY)
    cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B"})
    barrier = threading.Barrier(2)

    def mark(customer_id):
        def change(route):
            time.sleep(0.05)
            stops = tuple(
                replace(s, status="in_progress") if s.customer_id == customer_id else s for s in route.stops
            )
            return replace(route, stops=stops)

        barrier.wait()
        cache.update("acme", "crew-a", TODAY, change)

    threads = [threading.Thread(target=mark, args=(cid,)) for cid in ("A", "B")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    current = cache.current_route("acme", "crew-a", TODAY)
    assert [s.status for s in current.stops] == ["in_progress", "in_progress"]


def test_rebuilt_route_keeps_recorded_stop_progress():
    cache = RouteCache(StopsBuilder(), today=lambda: TODAY)
    cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B"})
    arrived, left = datetime(2024, 6, 10, 8, 10), datetime(2024, 6, 10, 8, 40)

    def complete_a(route):
        stops = tuple(
            replace(s, status="completed", actual_arrival=arrived, actual_departure=left, work_minutes=30.0)
            if s.customer_id == "A"
            else s
            for s in route.stops
        )
        return replace(route, stops=stops)

    cache.update("acme", "crew-a", TODAY, complete_a)
    rebuilt = cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B", "C"})

    by_id = {s.customer_id: s for s in rebuilt.stops}
    assert by_id["A"].status == "completed"
    assert (by_id["A"].actual_arrival, by_id["A"].actual_departure) == (arrived, left)
    assert by_id["A"].work_minutes == 30.0
    assert by_id["B"].status == "pending"
    assert by_id["C"].status == "pending"
    assert cache.current_route("acme", "crew-a", TODAY) is rebuilt


def test_visited_stop_no_longer_due_is_kept_after_rebuild():
    cache = RouteCache(StopsBuilder(), today=lambda: TODAY)
    cache.get_or_compute("acme", "crew-a", TODAY, {"A", "B"})
    cache.update(
        "acme",
        "crew-a",
        TODAY,
        lambda route: replace(
            route,
            stops=tuple(replace(s, status="skipped") if s.customer_id == "A" else s for s in route.stops),
        ),
    )

    rebuilt = cache.get_or_compute("acme", "crew-a", TODAY, {"B"})

    assert [(s.customer_id, s.sequence, s.status) for s in rebuilt.stops] == [
        ("B", 1, "pending"),
        ("A", 2, "skipped"),
    ]
