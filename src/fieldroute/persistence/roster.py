"""Customer, employee and base-location snapshots per company."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Iterable, Optional

from ..db.supabase import get_supabase_client
from ..models.domain import (
    BaseLocation,
    Coordinate,
    Customer,
    Employee,
    ServiceDescriptor,
    ServiceRecord,
    TimeWindow,
)
from ..services.scheduling.selector import normalize_frequency

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError as exc:
        raise ValueError(f"Unable to parse float from value '{value}'") from exc


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def service_from_row(row: dict[str, Any]) -> ServiceDescriptor:
    window = row.get("preferred_time_window") or {}
    return ServiceDescriptor(
        service_type=str(row.get("service_type") or "").strip(),
        frequency_days=normalize_frequency(row.get("frequency", row.get("frequency_days", 7))),
        preferred_days=frozenset(str(day).strip().lower() for day in row.get("preferred_days") or []),
        preferred_time_window=TimeWindow(
            start=window.get("start", "08:00"),
            end=window.get("end", "17:00"),
        ),
    )


def record_from_row(row: dict[str, Any]) -> ServiceRecord:
    service_date = _coerce_date(row.get("service_date") or row.get("date"))
    if service_date is None:
        raise ValueError(f"Service record {row.get('id')} has no date")
    return ServiceRecord(
        record_id=str(row.get("record_id") or row.get("id") or ""),
        service_date=service_date,
        crew_id=row.get("crew_id"),
        service_type=row.get("service_type"),
        status=(row.get("status") or "completed").strip().lower(),
        duration_minutes=_coerce_float(row.get("duration_minutes")),
        notes=row.get("notes") or "",
    )


def customer_from_row(row: dict[str, Any]) -> Customer:
    """Build a Customer from a ``customers`` table row.

    Missing coordinates map to (0, 0) so the customer is reported as
    having invalid coordinates rather than silently dropped.
    When ``last_service_date`` is absent it is taken from the latest
    completed entry in ``service_history``.
    """
    lat = _coerce_float(row.get("latitude"))
    lon = _coerce_float(row.get("longitude"))
    services = [service_from_row(item) for item in row.get("services") or []]
    history = sorted(
        (record_from_row(item) for item in row.get("service_history") or []),
        key=lambda record: record.service_date,
    )
    last_service = _coerce_date(row.get("last_service_date"))
    if last_service is None:
        completed = [record.service_date for record in history if record.status == "completed"]
        last_service = completed[-1] if completed else None
    return Customer(
        customer_id=str(row.get("customer_id") or row.get("id") or "").strip(),
        company_id=str(row.get("company_id") or "").strip(),
        name=(row.get("name") or "").strip(),
        address=(row.get("address") or "").strip(),
        location=Coordinate(lat if lat is not None else 0.0, lon if lon is not None else 0.0),
        services=[service for service in services if service.service_type],
        status=(row.get("status") or "active").strip().lower(),
        last_service_date=last_service,
        service_history=history,
    )


def employee_from_row(row: dict[str, Any]) -> Employee:
    crew_id = (row.get("crew_id") or "").strip() or None
    declared = row.get("crew_service_types")
    return Employee(
        employee_id=str(row.get("employee_id") or row.get("id") or "").strip(),
        company_id=str(row.get("company_id") or "").strip(),
        name=(row.get("name") or "").strip(),
        role=(row.get("role") or "employee").strip().lower(),
        crew_id=crew_id,
        crew_service_types=frozenset(str(s).strip() for s in declared) if declared is not None else None,
        availability=(row.get("availability") or "available").strip().lower(),
    )


class RosterSource(ABC):
    """Read-only snapshots of a company's customers, employees and base.

    Writers call ``notify`` after changing a company's data; subscribers
    receive the company id.
    """

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def customers(self, company_id: str) -> list[Customer]:
        raise NotImplementedError

    @abstractmethod
    def employees(self, company_id: str) -> list[Employee]:
        raise NotImplementedError

    @abstractmethod
    def base_location(self, company_id: str) -> Optional[BaseLocation]:
        raise NotImplementedError

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self, company_id: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(company_id)


class InMemoryRosterSource(RosterSource):
    """Roster kept in process memory; used by tests and local runs."""

    def __init__(
        self,
        customers: Iterable[Customer] = (),
        employees: Iterable[Employee] = (),
        bases: Iterable[BaseLocation] = (),
    ) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._customers: dict[str, dict[str, Customer]] = {}
        self._employees: dict[str, dict[str, Employee]] = {}
        self._bases: dict[str, BaseLocation] = {}
        for customer in customers:
            self._customers.setdefault(customer.company_id, {})[customer.customer_id] = customer
        for employee in employees:
            self._employees.setdefault(employee.company_id, {})[employee.employee_id] = employee
        for base in bases:
            self._bases[base.company_id] = base

    def customers(self, company_id: str) -> list[Customer]:
        with self._lock:
            return list(self._customers.get(company_id, {}).values())

    def employees(self, company_id: str) -> list[Employee]:
        with self._lock:
            return list(self._employees.get(company_id, {}).values())

    def base_location(self, company_id: str) -> Optional[BaseLocation]:
        with self._lock:
            return self._bases.get(company_id)

    def upsert_customer(self, customer: Customer) -> None:
        with self._lock:
            self._customers.setdefault(customer.company_id, {})[customer.customer_id] = customer
        self.notify(customer.company_id)

    def remove_customer(self, company_id: str, customer_id: str) -> None:
        with self._lock:
            self._customers.get(company_id, {}).pop(customer_id, None)
        self.notify(company_id)

    def upsert_employee(self, employee: Employee) -> None:
        with self._lock:
            self._employees.setdefault(employee.company_id, {})[employee.employee_id] = employee
        self.notify(employee.company_id)

    def set_base_location(self, base: BaseLocation) -> None:
        with self._lock:
            self._bases[base.company_id] = base
        self.notify(base.company_id)


class SupabaseRosterSource(RosterSource):
    """Roster read from the ``customers``, ``employees`` and ``companies`` tables."""

    def __init__(self, client: Any | None = None) -> None:
        super().__init__()
        self._client = client

    @property
    def client(self) -> Any:
        client = self._client or get_supabase_client()
        if client is None:
            raise RuntimeError("Supabase is not configured; set FIELDROUTE_SUPABASE_URL and FIELDROUTE_SUPABASE_KEY.")
        return client

    def _select(self, table: str, company_id: str) -> list[dict[str, Any]]:
        response = self.client.table(table).select("*").eq("company_id", company_id).execute()
        return list(response.data or [])

    def customers(self, company_id: str) -> list[Customer]:
        customers: list[Customer] = []
        for row in self._select("customers", company_id):
            try:
                customers.append(customer_from_row(row))
            except ValueError as exc:
                logger.warning(f"Skipping malformed customer row {row.get('customer_id') or row.get('id')}: {exc}")
        return customers

    def employees(self, company_id: str) -> list[Employee]:
        return [employee_from_row(row) for row in self._select("employees", company_id)]

    def base_location(self, company_id: str) -> Optional[BaseLocation]:
        rows = self._select("companies", company_id)
        if not rows:
            return None
        row = rows[0]
        lat = _coerce_float(row.get("base_latitude"))
        lon = _coerce_float(row.get("base_longitude"))
        if lat is None or lon is None:
            logger.warning(f"Company {company_id} has no base location configured")
            return None
        return BaseLocation(
            company_id=company_id,
            location=Coordinate(lat, lon),
            address=(row.get("base_address") or "").strip(),
            workday_start=(row.get("workday_start") or "08:00").strip(),
        )
