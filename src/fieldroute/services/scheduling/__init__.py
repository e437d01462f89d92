"""Due-service selection helpers."""

from .selector import (
    days_since_last_service,
    due_service_types,
    is_due,
    normalize_frequency,
    rank_by_priority,
    select_due,
    service_priority,
)

__all__ = [
    "days_since_last_service",
    "due_service_types",
    "is_due",
    "normalize_frequency",
    "rank_by_priority",
    "select_due",
    "service_priority",
]
