"""Due-service selection for a target date.

A customer is due when, for any of its service lines, the date falls on a
preferred weekday OR at least ``frequency_days`` have passed since the last
visit. The two signals are OR-combined so that a customer reachable through
either rule is scheduled; see DESIGN.md for the alternative (AND) reading.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional, Sequence

from ...models.domain import WEEKDAYS, Customer, ServiceDescriptor

logger = logging.getLogger(__name__)

FREQUENCY_LABELS = {
    "weekly": 7,
    "biweekly": 14,
    "monthly": 30,
}
ONE_TIME = "one-time"

# Days-overdue fallback used for priority when a customer was never serviced.
NEVER_SERVICED_DAYS = 30


def normalize_frequency(value: int | str | None) -> Optional[int]:
    """Map a stored frequency to days; ``None`` means one-time service."""

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid service frequency: {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"Service frequency must be positive, got {value}")
        return value
    normalized = str(value).strip().lower()
    if normalized == ONE_TIME:
        return None
    if normalized in FREQUENCY_LABELS:
        return FREQUENCY_LABELS[normalized]
    try:
        return normalize_frequency(int(normalized))
    except ValueError as exc:
        raise ValueError(f"Invalid service frequency: {value!r}") from exc


def weekday_name(target: date) -> str:
    return WEEKDAYS[target.weekday()]


def days_since_last_service(customer: Customer, target: date) -> Optional[int]:
    if customer.last_service_date is None:
        return None
    return (target - customer.last_service_date).days


def _preferred_day_due(service: ServiceDescriptor, target: date) -> bool:
    preferred = {day.strip().lower() for day in service.preferred_days}
    return weekday_name(target) in preferred


def _frequency_due(service: ServiceDescriptor, elapsed: Optional[int]) -> bool:
    if elapsed is None:
        return True
    if service.frequency_days is None:
        return False
    return elapsed >= service.frequency_days


def due_service_types(customer: Customer, target: date) -> tuple[str, ...]:
    """Service types on the customer account that are due on ``target``."""

    if customer.status != "active":
        return ()
    elapsed = days_since_last_service(customer, target)
    due: list[str] = []
    for service in customer.services:
        if _preferred_day_due(service, target) or _frequency_due(service, elapsed):
            if service.service_type not in due:
                due.append(service.service_type)
    return tuple(due)


def is_due(customer: Customer, target: date) -> bool:
    return bool(due_service_types(customer, target))


def select_due(customers: Iterable[Customer], target: date) -> list[Customer]:
    """Return the active customers due for a visit on ``target``.

    The result carries no ordering guarantee.
    """

    selected: list[Customer] = []
    skipped_inactive = 0
    for customer in customers:
        if customer.status != "active":
            skipped_inactive += 1
            continue
        if is_due(customer, target):
            selected.append(customer)
    logger.debug(
        f"Selected {len(selected)} due customers for {target.isoformat()} ({skipped_inactive} non-active skipped)"
    )
    return selected


def service_priority(customer: Customer, target: date) -> int:
    """Score 0-100 used to decide who is kept when a crew is over capacity."""

    elapsed = days_since_last_service(customer, target)
    if elapsed is None:
        elapsed = NEVER_SERVICED_DAYS
    frequencies = [s.frequency_days for s in customer.services if s.frequency_days is not None]
    frequency = min(frequencies) if frequencies else 0
    priority = max(0, elapsed - frequency + 1) * 10
    if any(_preferred_day_due(service, target) for service in customer.services):
        priority += 20
    priority += len(customer.services) * 5
    return min(priority, 100)


def rank_by_priority(customers: Sequence[Customer], target: date) -> list[Customer]:
    return sorted(customers, key=lambda c: (-service_priority(c, target), c.customer_id))
