"""Ahead / on schedule / behind classification for an in-progress route."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from ...config import settings
from ...models.domain import DailyRoute, ScheduleStatus, Stop
from .analytics import format_duration, route_stop_timings

REACHED = ("completed", "skipped")
REMAINING = ("pending", "in_progress")


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


def _clamp(minutes: float, cap: float) -> float:
    return min(max(minutes, 0.0), max(cap, 0.0))


def _elapsed(since: Optional[datetime], now: datetime, cap: float) -> float:
    """Minutes from ``since`` to ``now``, clamped to ``[0, cap]``."""
    if since is None:
        return 0.0
    return _clamp(_minutes(now - since), cap)


def _on_site_minutes(stop: Stop, now: datetime) -> float:
    if stop.actual_arrival is None:
        return 0.0
    minutes = _minutes(now - stop.actual_arrival) - stop.paused_minutes
    if stop.paused_at is not None:
        minutes -= max(_minutes(now - stop.paused_at), 0.0)
    return minutes


def _planned_offset(stop: Stop, following: Optional[Stop], start: datetime, now: datetime) -> Optional[float]:
    """Minutes into the planned day the crew has covered at ``stop``.

    An in-progress stop advances through its planned service time while
    the crew works on site; paused minutes do not count. After a departure
    the planned leg to the following pending stop is credited as it is
    driven.
    """
    if stop.planned_arrival is None:
        return None
    if stop.status == "in_progress":
        service = _minutes(stop.planned_departure - stop.planned_arrival) if stop.planned_departure else 0.0
        return _minutes(stop.planned_arrival - start) + _clamp(_on_site_minutes(stop, now), service)
    if stop.status not in REACHED:
        return None

    moment = stop.planned_departure or stop.planned_arrival
    offset = _minutes(moment - start)
    if following is not None and following.status == "pending" and following.planned_arrival is not None:
        leg = _minutes(following.planned_arrival - moment)
        offset += _elapsed(stop.actual_departure, now, leg)
    return offset


def _progress_minutes(route: DailyRoute, start: datetime, now: datetime) -> float:
    ordered = sorted(route.stops, key=lambda s: s.sequence)
    furthest = 0.0
    for index, stop in enumerate(ordered):
        following = ordered[index + 1] if index + 1 < len(ordered) else None
        offset = _planned_offset(stop, following, start, now)
        if offset is not None and offset > furthest:
            furthest = offset
    return furthest


def _estimate_finish(route: DailyRoute, now: datetime, completed: int, remaining: int) -> datetime:
    if remaining == 0:
        departures = [s.actual_departure for s in route.stops if s.actual_departure is not None]
        return max(departures) if departures else now

    if completed >= 2:
        per_stop = [
            (t.drive_minutes or 0.0) + (t.work_minutes or 0.0)
            for t in route_stop_timings(route)
            if t.work_minutes is not None
        ]
        if per_stop:
            average = sum(per_stop) / len(per_stop)
            return now + timedelta(minutes=average * remaining)

    start = route.planned_start
    if start is None:
        return now
    return start + timedelta(minutes=route.estimated_duration_minutes)


def schedule_status(route: DailyRoute, now: datetime) -> ScheduleStatus:
    """Compare progress through the stops against the planned timeline.

    The expected position is the planned minutes elapsed since the route's
    planned start, clamped to the planned duration. Actual position is the
    planned offset of the furthest stop reached, advanced through the
    current job or drive. A difference inside the tolerance is
    ``on_schedule``.
    """
    total = len(route.stops)
    completed = sum(1 for s in route.stops if s.status == "completed")
    remaining = sum(1 for s in route.stops if s.status in REMAINING)

    start = route.planned_start
    if start is None:
        classification, delta = "on_schedule", 0.0
    else:
        expected = min(max(_minutes(now - start), 0.0), route.estimated_duration_minutes)
        difference = _progress_minutes(route, start, now) - expected
        tolerance = settings.schedule_tolerance_minutes
        if difference > tolerance:
            classification = "ahead"
        elif difference < -tolerance:
            classification = "behind"
        else:
            classification = "on_schedule"
        delta = abs(difference)

    reached = total - remaining
    status = ScheduleStatus(
        classification=classification,
        minutes_delta=round(delta, 1),
        estimated_finish_time=_estimate_finish(route, now, completed, remaining),
        stops_remaining=remaining,
        stops_completed=completed,
        total_stops=total,
        progress_percentage=round(reached / total * 100) if total else 100,
    )
    return replace(status, message=status_message(status))


def status_message(status: ScheduleStatus) -> str:
    if status.total_stops and status.stops_remaining == 0:
        return "All stops completed"
    if status.classification == "on_schedule":
        return "On schedule"
    return f"{format_duration(status.minutes_delta)} {status.classification} schedule"


def is_significantly_delayed(status: ScheduleStatus) -> bool:
    return status.classification == "behind" and status.minutes_delta >= settings.significant_delay_minutes


def next_stop(route: DailyRoute) -> Optional[Stop]:
    for stop in sorted(route.stops, key=lambda s: s.sequence):
        if stop.status in REMAINING:
            return stop
    return None


def next_stop_eta(route: DailyRoute, now: datetime) -> Optional[datetime]:
    """Arrival estimate for the next unfinished stop.

    An in-progress stop is already reached, so its ETA is its actual arrival.
    Otherwise the planned arrival is shifted by the current schedule delta.
    """
    stop = next_stop(route)
    if stop is None:
        return None
    if stop.status == "in_progress":
        return stop.actual_arrival or now
    if stop.planned_arrival is None:
        return None
    status = schedule_status(route, now)
    shift = timedelta(minutes=status.minutes_delta)
    if status.classification == "behind":
        eta = stop.planned_arrival + shift
    elif status.classification == "ahead":
        eta = stop.planned_arrival - shift
    else:
        eta = stop.planned_arrival
    return max(eta, now)


def schedule_summary(route: DailyRoute, now: datetime) -> dict:
    status = schedule_status(route, now)
    upcoming = next_stop(route)
    eta = next_stop_eta(route, now)
    return {
        "route_id": route.route_id,
        "crew_id": route.crew_id,
        "classification": status.classification,
        "minutes_delta": status.minutes_delta,
        "message": status.message,
        "progress_percentage": status.progress_percentage,
        "stops_completed": status.stops_completed,
        "stops_remaining": status.stops_remaining,
        "total_stops": status.total_stops,
        "estimated_finish_time": status.estimated_finish_time,
        "significantly_delayed": is_significantly_delayed(status),
        "next_stop": upcoming.customer_id if upcoming else None,
        "next_stop_eta": eta,
    }
