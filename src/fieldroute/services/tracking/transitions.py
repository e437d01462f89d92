"""Stop status transitions recorded by crews in the field."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from ...errors import InputError
from ...models.domain import DailyRoute, Stop, StopStatus
from .analytics import per_stop_timing

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "skipped"}),
    "in_progress": frozenset({"completed", "skipped"}),
    "completed": frozenset(),
    "skipped": frozenset(),
}


def advance_stop(stop: Stop, new_status: StopStatus, at: datetime) -> Stop:
    """Return a copy of ``stop`` moved to ``new_status``.

    Arriving stamps ``actual_arrival`` and completing stamps
    ``actual_departure``. Completed and skipped stops are final.
    """
    allowed = ALLOWED_TRANSITIONS.get(stop.status, frozenset())
    if new_status not in allowed:
        raise InputError(f"Stop {stop.customer_id} cannot move from {stop.status} to {new_status}.")

    if new_status == "in_progress":
        return replace(stop, status=new_status, actual_arrival=at)
    if new_status == "completed":
        arrival = stop.actual_arrival or at
        if at < arrival:
            raise InputError(f"Stop {stop.customer_id} cannot be completed before it was reached.")
        stop = _end_pause(stop, at)
        return replace(stop, status=new_status, actual_arrival=arrival, actual_departure=at)
    return replace(_end_pause(stop, at), status=new_status)


def _end_pause(stop: Stop, at: datetime) -> Stop:
    if stop.paused_at is None:
        return stop
    paused = max((at - stop.paused_at).total_seconds() / 60.0, 0.0)
    return replace(stop, paused_at=None, paused_minutes=stop.paused_minutes + paused)


def pause_stop(stop: Stop, at: datetime) -> Stop:
    """Stop the work clock on an in-progress stop."""
    if stop.status != "in_progress":
        raise InputError(f"Stop {stop.customer_id} can only be paused while in progress.")
    if stop.paused_at is not None:
        raise InputError(f"Stop {stop.customer_id} is already paused.")
    if stop.actual_arrival is not None and at < stop.actual_arrival:
        raise InputError(f"Stop {stop.customer_id} cannot be paused before it was reached.")
    return replace(stop, paused_at=at)


def resume_stop(stop: Stop, at: datetime) -> Stop:
    """Restart the work clock, adding the pause to ``paused_minutes``."""
    if stop.paused_at is None:
        raise InputError(f"Stop {stop.customer_id} is not paused.")
    if at < stop.paused_at:
        raise InputError(f"Stop {stop.customer_id} cannot be resumed before it was paused.")
    return _end_pause(stop, at)


def _locate(route: DailyRoute, customer_id: str) -> tuple[list[Stop], int]:
    ordered = sorted(route.stops, key=lambda s: s.sequence)
    index = next((i for i, s in enumerate(ordered) if s.customer_id == customer_id), None)
    if index is None:
        raise InputError(f"Customer {customer_id} is not a stop on route {route.route_id}.")
    return ordered, index


def apply_stop_update(route: DailyRoute, customer_id: str, new_status: StopStatus, at: datetime) -> DailyRoute:
    """Return a new route with one stop advanced and its drive/work minutes refreshed."""
    ordered, index = _locate(route, customer_id)
    updated = advance_stop(ordered[index], new_status, at)
    if updated.actual_arrival is not None:
        previous = next(
            (s for s in reversed(ordered[:index]) if s.actual_departure is not None),
            None,
        )
        timing = per_stop_timing(updated, previous)
        updated = replace(updated, drive_minutes=timing.drive_minutes, work_minutes=timing.work_minutes)

    ordered[index] = updated
    return replace(route, stops=tuple(ordered))


def apply_pause(route: DailyRoute, customer_id: str, paused: bool, at: datetime) -> DailyRoute:
    """Return a new route with one stop paused or resumed."""
    ordered, index = _locate(route, customer_id)
    stop = ordered[index]
    ordered[index] = pause_stop(stop, at) if paused else resume_stop(stop, at)
    return replace(route, stops=tuple(ordered))


def carry_over_progress(previous: DailyRoute, rebuilt: DailyRoute) -> DailyRoute:
    """Copy the progress recorded on ``previous`` onto a freshly built route.

    Stops present in both routes keep their status, timestamps and measured
    minutes. Stops already reached on ``previous`` that are no longer due
    are appended after the rebuilt stops so recorded work is not lost.
    """
    recorded = {stop.customer_id: stop for stop in previous.stops if stop.status != "pending"}
    if not recorded:
        return rebuilt

    stops: list[Stop] = []
    for stop in sorted(rebuilt.stops, key=lambda s: s.sequence):
        seen = recorded.pop(stop.customer_id, None)
        if seen is not None:
            stop = replace(
                stop,
                status=seen.status,
                actual_arrival=seen.actual_arrival,
                actual_departure=seen.actual_departure,
                drive_minutes=seen.drive_minutes,
                work_minutes=seen.work_minutes,
                paused_at=seen.paused_at,
                paused_minutes=seen.paused_minutes,
            )
        stops.append(stop)

    if recorded:
        logger.info(
            f"Keeping {len(recorded)} visited stop(s) on {rebuilt.route_id} that are no longer due: "
            f"{', '.join(sorted(recorded))}"
        )
        leftovers = sorted(recorded.values(), key=lambda s: s.sequence)
        last = len(stops)
        stops.extend(replace(stop, sequence=last + offset) for offset, stop in enumerate(leftovers, start=1))
    return replace(rebuilt, stops=tuple(stops))
