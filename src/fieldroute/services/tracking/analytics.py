"""Drive/work time analytics derived from recorded stop timestamps."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ...config import settings
from ...models.domain import DailyRoute, RouteMetrics, RouteTimeBreakdown, Stop, StopTiming


def _minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return max((end - start).total_seconds() / 60.0, 0.0)


def efficiency_ratio(work_minutes: Optional[float], drive_minutes: Optional[float]) -> Optional[float]:
    if work_minutes is None or drive_minutes is None:
        return None
    total = work_minutes + drive_minutes
    if total <= 0:
        return None
    return work_minutes / total


def per_stop_timing(
    stop: Stop,
    previous: Stop | None = None,
    *,
    day_start: datetime | None = None,
) -> StopTiming:
    """Drive and work minutes for one stop.

    Drive time runs from the previous stop's departure to this arrival. For
    the first stop it is measured from ``day_start`` when given, else 0.
    Paused minutes are not counted as work.
    """
    work = _minutes_between(stop.actual_arrival, stop.actual_departure)
    if work is not None:
        work = max(work - stop.paused_minutes, 0.0)
    if previous is not None:
        drive = _minutes_between(previous.actual_departure, stop.actual_arrival)
    elif day_start is not None:
        drive = _minutes_between(day_start, stop.actual_arrival)
    else:
        drive = 0.0 if stop.actual_arrival is not None else None
    return StopTiming(
        customer_id=stop.customer_id,
        drive_minutes=drive,
        work_minutes=work,
        efficiency=efficiency_ratio(work, drive),
    )


def route_stop_timings(route: DailyRoute, *, day_start: datetime | None = None) -> list[StopTiming]:
    """Timings for every visited stop, in visit order.

    Skipped or unvisited stops are left out so that the next visited stop
    measures its drive from the last real departure.
    """
    timings: list[StopTiming] = []
    previous: Stop | None = None
    for stop in sorted(route.stops, key=lambda s: s.sequence):
        if stop.actual_arrival is None:
            continue
        timings.append(per_stop_timing(stop, previous, day_start=day_start if previous is None else None))
        if stop.actual_departure is not None:
            previous = stop
    return timings


def route_time_breakdown(route: DailyRoute, *, day_start: datetime | None = None) -> RouteTimeBreakdown:
    """Crew-level totals. A drive gap that exceeds the planned leg by more than
    the break threshold counts the excess as break time. Paused
    on-site time is break time too."""
    timings = route_stop_timings(route, day_start=day_start)
    planned = {stop.customer_id: stop.planned_drive_minutes for stop in route.stops}
    paused = {stop.customer_id: stop.paused_minutes for stop in route.stops}

    drive_total = 0.0
    work_total = 0.0
    break_total = 0.0
    for timing in timings:
        if timing.drive_minutes is not None:
            drive_total += timing.drive_minutes
            excess = timing.drive_minutes - planned.get(timing.customer_id, 0.0)
            if excess > settings.break_threshold_minutes:
                break_total += excess
        if timing.work_minutes is not None:
            work_total += timing.work_minutes
            break_total += paused.get(timing.customer_id, 0.0)

    return RouteTimeBreakdown(
        drive_minutes=round(drive_total, 2),
        work_minutes=round(work_total, 2),
        break_minutes=round(break_total, 2),
        efficiency=efficiency_ratio(work_total, drive_total) if timings else None,
        stops=timings,
    )


@dataclass(frozen=True, slots=True)
class PerformanceSummary:
    total_minutes: float
    drive_percentage: float
    work_percentage: float
    break_percentage: float
    efficiency: Optional[float]
    average_minutes_per_stop: float
    fastest_stop: Optional[StopTiming]
    slowest_stop: Optional[StopTiming]


def performance_summary(route: DailyRoute) -> PerformanceSummary:
    breakdown = route_time_breakdown(route)
    total = breakdown.drive_minutes + breakdown.work_minutes
    worked = [t for t in breakdown.stops if t.work_minutes is not None]
    fastest = min(worked, key=lambda t: (t.work_minutes, t.customer_id), default=None)
    slowest = max(worked, key=lambda t: (t.work_minutes, t.customer_id), default=None)
    return PerformanceSummary(
        total_minutes=total,
        drive_percentage=breakdown.drive_minutes / total * 100 if total else 0.0,
        work_percentage=breakdown.work_minutes / total * 100 if total else 0.0,
        break_percentage=breakdown.break_minutes / total * 100 if total else 0.0,
        efficiency=breakdown.efficiency,
        average_minutes_per_stop=total / len(worked) if worked else 0.0,
        fastest_stop=fastest,
        slowest_stop=slowest,
    )


def format_duration(minutes: float) -> str:
    if minutes < 60:
        return f"{round(minutes)}min"
    hours = int(minutes // 60)
    mins = round(minutes % 60)
    if mins == 60:
        hours, mins = hours + 1, 0
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}min"


def route_metrics(route: DailyRoute, recorded_at: datetime) -> RouteMetrics:
    """Snapshot of a route's drive, work and break totals for reporting."""
    breakdown = route_time_breakdown(route)
    return RouteMetrics(
        company_id=route.company_id,
        crew_id=route.crew_id,
        route_id=route.route_id,
        service_date=route.service_date,
        drive_minutes=breakdown.drive_minutes,
        work_minutes=breakdown.work_minutes,
        break_minutes=breakdown.break_minutes,
        efficiency=breakdown.efficiency,
        customer_stops=len(route.stops),
        stops=tuple(breakdown.stops),
        recorded_at=recorded_at,
    )
