"""Routing orchestration service."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Callable, Optional, Sequence

from ...config import settings
from ...errors import InputError
from ...models.domain import (
    BaseLocation,
    CompanySchedule,
    Coordinate,
    Customer,
    DailyRoute,
    RouteMetrics,
    Stop,
    StopStatus,
    UnassignedCustomer,
)
from ...persistence.filesystem import FileStorage
from ...persistence.roster import InMemoryRosterSource, RosterSource, SupabaseRosterSource
from ..crews import assign_customers_to_crews, build_crews
from ..geospatial import is_valid_coordinate
from ..outputs.routing_formatter import (
    company_schedule_to_json,
    daily_route_to_json,
    daily_routes_to_csv,
    route_metrics_from_json,
    route_metrics_to_json,
)
from ..scheduling import due_service_types, rank_by_priority, select_due
from ..tracking.analytics import route_metrics
from ..tracking.arrival import auto_detect_arrival
from ..tracking.transitions import apply_pause, apply_stop_update
from .cache import RouteCache
from .optimizer import OptimizedRoute, optimize_route
from .travel import TravelTimeProvider, build_default_provider

logger = logging.getLogger(__name__)


def parse_workday_start(service_date: date, value: str) -> datetime:
    try:
        start = datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError as exc:
        raise InputError(f"Invalid workday start '{value}', expected HH:MM.") from exc
    return datetime.combine(service_date, start)


def _customer_summary(customer: Customer) -> tuple[str, ...]:
    return tuple(s.service_type for s in customer.services)


def build_daily_route(
    company_id: str,
    crew_id: str,
    service_date: date,
    base: BaseLocation,
    optimized: OptimizedRoute,
    *,
    cache_key: str | None = None,
    service_minutes: float | None = None,
    created_at: datetime | None = None,
) -> DailyRoute:
    """Lay the optimized visit order onto the clock, starting at the base's workday start."""
    per_stop = settings.default_service_minutes if service_minutes is None else service_minutes
    clock = parse_workday_start(service_date, base.workday_start or settings.default_workday_start)

    stops: list[Stop] = []
    for sequence, (customer, leg) in enumerate(zip(optimized.customers, optimized.legs), start=1):
        arrival = clock + timedelta(minutes=leg.duration_minutes)
        departure = arrival + timedelta(minutes=per_stop)
        stops.append(
            Stop(
                customer_id=customer.customer_id,
                customer_name=customer.name,
                address=customer.address,
                location=customer.location,
                sequence=sequence,
                planned_arrival=arrival,
                planned_departure=departure,
                planned_drive_minutes=leg.duration_minutes,
            )
        )
        clock = departure

    travel = optimized.total_duration_minutes
    path = (base.location, *(c.location for c in optimized.customers), base.location) if stops else ()
    return DailyRoute(
        route_id=f"{company_id}_{crew_id}_{service_date.isoformat()}",
        company_id=company_id,
        crew_id=crew_id,
        service_date=service_date,
        stops=tuple(stops),
        path=path,
        total_distance_km=round(optimized.total_distance_meters / 1000.0, 3),
        travel_minutes=round(travel, 2),
        estimated_duration_minutes=round(travel + per_stop * len(stops), 2),
        created_at=created_at or datetime.now(),
        degraded=optimized.degraded,
        cache_key=cache_key,
    )


class RouteGenerationService:
    """Turns a company's roster into one cached daily route per crew.

    Roster changes reported through the source's ``subscribe`` hook, or
    through ``notify_changed``, queue the company; ``reconcile`` regenerates
    every queued company for a date.
    """

    def __init__(
        self,
        source: RosterSource,
        provider: TravelTimeProvider | None = None,
        cache: RouteCache | None = None,
        *,
        storage: FileStorage | None = None,
        persist: bool = False,
        max_workers: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.source = source
        self.provider = provider or build_default_provider()
        self.cache = cache or RouteCache()
        self.persist = persist
        self._storage = storage
        self.max_workers = max_workers or settings.max_parallel_crews
        self._clock = clock
        self._pending: set[str] = set()
        self._pending_lock = threading.Lock()
        self._unsubscribe = source.subscribe(self.notify_changed)

    def close(self) -> None:
        self._unsubscribe()

    def _partition(
        self,
        company_id: str,
        service_date: date,
        require_full_coverage: bool = False,
    ) -> tuple[BaseLocation, dict[str, list[Customer]], list[UnassignedCustomer]]:
        base = self.source.base_location(company_id)
        if base is None:
            raise InputError(f"Company {company_id} has no base location configured.")
        if not is_valid_coordinate(base.location):
            raise InputError(f"Company {company_id} base location has invalid coordinates.")

        due = select_due(self.source.customers(company_id), service_date)
        unassigned: list[UnassignedCustomer] = []
        routable: list[Customer] = []
        for customer in due:
            if is_valid_coordinate(customer.location):
                routable.append(customer)
            else:
                unassigned.append(
                    UnassignedCustomer(
                        customer_id=customer.customer_id,
                        reason="invalid_coordinates",
                        service_types=due_service_types(customer, service_date),
                    )
                )
        if len(routable) != len(due):
            logger.warning(
                f"{len(due) - len(routable)} due customer(s) for {company_id} skipped: invalid coordinates"
            )

        crews = build_crews(self.source.employees(company_id))
        assignment = assign_customers_to_crews(routable, crews, service_date)
        if require_full_coverage:
            error = assignment.capability_error()
            if error is not None:
                raise error
        unassigned.extend(assignment.unassigned)

        limit = settings.max_customers_per_route
        partitions: dict[str, list[Customer]] = {}
        for crew_id, customers in assignment.assignments.items():
            if len(customers) > limit:
                ranked = rank_by_priority(customers, service_date)
                customers, overflow = ranked[:limit], ranked[limit:]
                logger.info(f"Crew {crew_id} over capacity on {service_date}: deferring {len(overflow)} customer(s)")
                unassigned.extend(
                    UnassignedCustomer(customer_id=c.customer_id, reason="capacity", service_types=_customer_summary(c))
                    for c in overflow
                )
            partitions[crew_id] = customers
        return base, partitions, unassigned

    def _route_for_crew(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        base: BaseLocation,
        customers: Sequence[Customer],
    ) -> DailyRoute:
        by_id = {customer.customer_id: customer for customer in customers}

        def build(company: str, crew: str, day: date, due_ids: frozenset[str], cache_key: str) -> DailyRoute:
            optimized = optimize_route(base.location, [by_id[cid] for cid in due_ids], self.provider)
            route = build_daily_route(company, crew, day, base, optimized, cache_key=cache_key, created_at=self._clock())
            logger.info(
                f"Built route {route.route_id}: {len(route.stops)} stops, "
                f"{route.total_distance_km:.1f} km{' (degraded)' if route.degraded else ''}"
            )
            return route

        return self.cache.get_or_compute(company_id, crew_id, service_date, by_id.keys(), build)

    def generate_for_company(
        self,
        company_id: str,
        service_date: date,
        *,
        require_full_coverage: bool = False,
    ) -> CompanySchedule:
        """Build every crew's route for ``service_date``.

        With ``require_full_coverage`` a ``CapabilityError`` is raised instead
        of reporting customers no crew can serve as unassigned.
        """
        base, partitions, unassigned = self._partition(company_id, service_date, require_full_coverage)
        schedule = CompanySchedule(
            company_id=company_id,
            service_date=service_date,
            routes={},
            unassigned=sorted(unassigned, key=lambda u: u.customer_id),
        )
        if not partitions:
            logger.info(f"No routable customers for {company_id} on {service_date}")
            return schedule

        workers = min(self.max_workers, len(partitions))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="crew-route") as pool:
            futures = {
                crew_id: pool.submit(self._route_for_crew, company_id, crew_id, service_date, base, customers)
                for crew_id, customers in sorted(partitions.items())
            }
            for crew_id, future in futures.items():
                try:
                    schedule.routes[crew_id] = future.result()
                except Exception as exc:
                    logger.error(f"Route generation failed for crew {crew_id} on {service_date}: {exc}", exc_info=exc)
                    schedule.failures[crew_id] = str(exc)

        if self.persist:
            self.save_schedule(schedule)
        return schedule

    def notify_changed(self, company_id: str) -> None:
        with self._pending_lock:
            self._pending.add(company_id)
        logger.debug(f"Company {company_id} queued for reconciliation")

    def pending_companies(self) -> list[str]:
        with self._pending_lock:
            return sorted(self._pending)

    def reconcile(self, service_date: date) -> dict[str, CompanySchedule]:
        """Regenerate every company queued since the last pass."""
        with self._pending_lock:
            pending = sorted(self._pending)
            self._pending.clear()

        schedules: dict[str, CompanySchedule] = {}
        for company_id in pending:
            try:
                schedules[company_id] = self.generate_for_company(company_id, service_date)
            except Exception as exc:
                logger.error(f"Reconciliation failed for {company_id} on {service_date}: {exc}", exc_info=exc)
                self.notify_changed(company_id)
        return schedules

    def crew_route(self, company_id: str, crew_id: str, service_date: date) -> Optional[DailyRoute]:
        route = self.cache.current_route(company_id, crew_id, service_date)
        if route is not None:
            return route
        return self.generate_for_company(company_id, service_date).routes.get(crew_id)

    def update_stop(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        customer_id: str,
        new_status: StopStatus,
        at: datetime | None = None,
    ) -> DailyRoute:
        self._require_route(company_id, crew_id, service_date)
        when = at or self._clock()
        updated = self.cache.update(
            company_id,
            crew_id,
            service_date,
            lambda route: apply_stop_update(route, customer_id, new_status, when),
        )
        self._after_update(updated)
        return updated

    def set_paused(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        customer_id: str,
        paused: bool,
        at: datetime | None = None,
    ) -> DailyRoute:
        """Pause or resume the work clock on an in-progress stop."""
        self._require_route(company_id, crew_id, service_date)
        when = at or self._clock()
        updated = self.cache.update(
            company_id,
            crew_id,
            service_date,
            lambda route: apply_pause(route, customer_id, paused, when),
        )
        logger.info(f"Stop {customer_id} on {updated.route_id} {'paused' if paused else 'resumed'} at {when:%H:%M}")
        if self.persist:
            self.save_route(updated)
        return updated

    def report_position(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        position: Coordinate,
        at: datetime | None = None,
    ) -> tuple[DailyRoute, Optional[Stop]]:
        """Mark the next stop in progress when the crew's position is within its arrival radius.

        Returns the current route and the stop that was arrived at, if any.
        """
        self._require_route(company_id, crew_id, service_date)
        when = at or self._clock()
        arrived: list[Stop] = []

        def arrive(route: DailyRoute) -> DailyRoute:
            stop = auto_detect_arrival(route, position)
            if stop is None:
                return route
            arrived.append(stop)
            return apply_stop_update(route, stop.customer_id, "in_progress", when)

        updated = self.cache.update(company_id, crew_id, service_date, arrive)
        if not arrived:
            return updated, None
        logger.info(f"Crew {crew_id} arrived at {arrived[0].customer_id} on {updated.route_id} at {when:%H:%M}")
        self._after_update(updated)
        return updated, arrived[0]

    def _require_route(self, company_id: str, crew_id: str, service_date: date) -> None:
        if self.crew_route(company_id, crew_id, service_date) is None:
            raise InputError(f"No route for crew {crew_id} of {company_id} on {service_date}.")

    def _after_update(self, route: DailyRoute) -> None:
        if not self.persist:
            return
        self.save_route(route)
        if route.stops and all(stop.status in ("completed", "skipped") for stop in route.stops):
            self.record_metrics(route)

    def record_metrics(self, route: DailyRoute) -> RouteMetrics:
        """Write the route's time totals under the metrics directory."""
        metrics = route_metrics(route, self._clock())
        directory = self.storage.metrics_directory(route.company_id, route.service_date)
        self.storage.write_json(directory / f"{route.crew_id}.json", route_metrics_to_json(metrics))
        logger.info(
            f"Recorded metrics for {route.route_id}: drive {metrics.drive_minutes:.0f} min, "
            f"work {metrics.work_minutes:.0f} min, break {metrics.break_minutes:.0f} min"
        )
        return metrics

    def load_metrics(self, company_id: str, service_date: date) -> list[RouteMetrics]:
        directory = self.storage.metrics_directory(company_id, service_date)
        return [route_metrics_from_json(self.storage.read_json(path)) for path in sorted(directory.glob("*.json"))]

    @property
    def storage(self) -> FileStorage:
        if self._storage is None:
            self._storage = FileStorage()
        return self._storage

    def save_route(self, route: DailyRoute) -> None:
        directory = self.storage.route_directory(route.company_id, route.service_date)
        self.storage.write_json(directory / f"{route.crew_id}.json", daily_route_to_json(route))

    def save_schedule(self, schedule: CompanySchedule) -> None:
        directory = self.storage.route_directory(schedule.company_id, schedule.service_date)
        for route in schedule.routes.values():
            self.save_route(route)
        self.storage.write_json(directory / "schedule.json", company_schedule_to_json(schedule))
        routes = [schedule.routes[crew_id] for crew_id in sorted(schedule.routes)]
        self.storage.write_csv(directory / "routes.csv", daily_routes_to_csv(routes))


@lru_cache()
def get_route_service() -> RouteGenerationService:
    """Process-wide service backed by Supabase when configured."""
    if settings.supabase_url and settings.supabase_key:
        source: RosterSource = SupabaseRosterSource()
    else:
        logger.warning("Supabase not configured; serving routes from an empty in-memory roster")
        source = InMemoryRosterSource()
    return RouteGenerationService(source, persist=settings.persist_routes)
