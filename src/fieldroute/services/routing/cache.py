"""Memoized daily routes with per-key request coalescing."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterable, Optional, Protocol

from ...config import settings
from ...errors import ConcurrencyConflict
from ...models.domain import DailyRoute
from ..tracking.transitions import carry_over_progress

logger = logging.getLogger(__name__)

Slot = tuple[str, str, date]


class RouteBuilder(Protocol):
    def __call__(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        due_customer_ids: frozenset[str],
        cache_key: str,
    ) -> DailyRoute: ...


@dataclass(slots=True)
class _Entry:
    slot: Slot
    route: DailyRoute


def make_cache_key(company_id: str, crew_id: str, service_date: date, due_customer_ids: Iterable[str]) -> str:
    payload = json.dumps(
        [company_id, crew_id, service_date.isoformat(), sorted(set(due_customer_ids))],
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class RouteCache:
    """Routes keyed by (company, crew, date, due-customer set).

    At most one build runs per key; concurrent callers wait on the same
    future. Each (company, crew, date) slot keeps only the entry for its most
    recently requested key, and entries older than the retention window are
    purged on access. When a slot's key changes, the evicted route's stop
    progress is carried onto the route built for the new key.
    """

    def __init__(
        self,
        builder: RouteBuilder | None = None,
        *,
        retention_days: int | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._builder = builder
        self.retention_days = settings.route_cache_retention_days if retention_days is None else retention_days
        self._today = today
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, Future] = {}
        self._latest: dict[Slot, str] = {}
        self._superseded: dict[Slot, DailyRoute] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_compute(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        due_customer_ids: Iterable[str],
        builder: RouteBuilder | None = None,
    ) -> DailyRoute:
        build = builder or self._builder
        if build is None:
            raise ValueError("RouteCache needs a route builder to compute missing entries.")
        due_ids = frozenset(due_customer_ids)
        key = make_cache_key(company_id, crew_id, service_date, due_ids)
        slot: Slot = (company_id, crew_id, service_date)

        with self._lock:
            self._purge_expired_locked()
            previous = self._latest.get(slot)
            if previous != key:
                evicted = self._entries.pop(previous, None) if previous is not None else None
                if evicted is not None:
                    logger.info(f"Due set changed for crew {crew_id} on {service_date}; evicting cached route")
                    self._superseded[slot] = evicted.route
                self._latest[slot] = key
            entry = self._entries.get(key)
            if entry is not None:
                return entry.route
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            return future.result()

        try:
            route = build(company_id, crew_id, service_date, due_ids, key)
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            self._inflight.pop(key, None)
            superseded = self._superseded.get(slot)
            if superseded is not None:
                route = carry_over_progress(superseded, route)
            if self._latest.get(slot) == key:
                self._entries[key] = _Entry(slot=slot, route=route)
                self._superseded.pop(slot, None)
            else:
                logger.info(f"Discarding route for crew {crew_id} on {service_date}: due set changed while computing")
        future.set_result(route)
        return route

    def current_route(self, company_id: str, crew_id: str, service_date: date) -> Optional[DailyRoute]:
        with self._lock:
            key = self._latest.get((company_id, crew_id, service_date))
            entry = self._entries.get(key) if key else None
            return entry.route if entry else None

    def update(
        self,
        company_id: str,
        crew_id: str,
        service_date: date,
        change: Callable[[DailyRoute], DailyRoute],
    ) -> DailyRoute:
        """Apply ``change`` to the slot's current route and store the result atomically.

        Raises ``ConcurrencyConflict`` while the slot has no current route,
        i.e. a rebuild for a newer due set has not finished yet.
        """
        slot: Slot = (company_id, crew_id, service_date)
        with self._lock:
            key = self._latest.get(slot)
            entry = self._entries.get(key) if key else None
            if entry is None:
                raise ConcurrencyConflict(
                    f"Route for crew {crew_id} on {service_date} is being rebuilt for a new due-customer set",
                    stale_key="",
                    current_key=key,
                )
            route = change(entry.route)
            self._entries[key] = _Entry(slot=slot, route=route)
        return route

    def _purge_expired_locked(self) -> None:
        cutoff = self._today() - timedelta(days=self.retention_days)
        expired = [key for key, entry in self._entries.items() if entry.slot[2] < cutoff]
        for key in expired:
            del self._entries[key]
        for slot in [s for s in self._latest if s[2] < cutoff]:
            del self._latest[slot]
        for slot in [s for s in self._superseded if s[2] < cutoff]:
            del self._superseded[slot]
        if expired:
            logger.debug(f"Purged {len(expired)} cached routes older than {cutoff}")
