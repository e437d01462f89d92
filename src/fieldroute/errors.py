"""Error taxonomy for route generation and crew scheduling."""

from __future__ import annotations

from typing import Iterable


class RoutingEngineError(Exception):
    """Base class for all scheduling engine errors."""


class InputError(RoutingEngineError, ValueError):
    """Missing or invalid input, e.g. bad coordinates or an illegal stop transition."""


class ProviderError(RoutingEngineError, ConnectionError):
    """The travel-time provider failed or timed out.

    Recovered locally by falling back to straight-line ordering; never surfaced
    as a hard failure of a generation cycle.
    """


class CapabilityError(RoutingEngineError, LookupError):
    """No crew can perform the service types some customers require."""

    def __init__(self, message: str, customer_ids: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.customer_ids = tuple(customer_ids)


class ConcurrencyConflict(RoutingEngineError):
    """A computed route belongs to a due-customer set that has since been replaced."""

    def __init__(self, message: str, *, stale_key: str, current_key: str | None) -> None:
        super().__init__(message)
        self.stale_key = stale_key
        self.current_key = current_key
