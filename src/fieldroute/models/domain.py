"""Domain models for customers, crews, and daily routes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Literal, Optional

CustomerStatus = Literal["active", "inactive", "pending"]
EmployeeRole = Literal["admin", "manager", "employee"]
Availability = Literal["available", "busy", "offline"]
StopStatus = Literal["pending", "in_progress", "completed", "skipped"]
ScheduleClassification = Literal["ahead", "on_schedule", "behind"]
UnassignedReason = Literal["no_capable_crew", "invalid_coordinates", "capacity"]

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True, slots=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: str = "08:00"
    end: str = "17:00"


@dataclass(slots=True)
class ServiceDescriptor:
    """One recurring service line on a customer account."""

    service_type: str
    frequency_days: Optional[int] = 7
    preferred_days: frozenset[str] = frozenset()
    preferred_time_window: TimeWindow = field(default_factory=TimeWindow)


@dataclass(slots=True)
class ServiceRecord:
    record_id: str
    service_date: date
    crew_id: Optional[str] = None
    service_type: Optional[str] = None
    status: str = "completed"
    duration_minutes: Optional[float] = None
    notes: str = ""


@dataclass(slots=True)
class Customer:
    """Tenant-scoped customer enriched with scheduling preferences."""

    customer_id: str
    company_id: str
    name: str
    address: str
    location: Coordinate
    services: list[ServiceDescriptor]
    status: CustomerStatus = "active"
    last_service_date: Optional[date] = None
    service_history: list[ServiceRecord] = field(default_factory=list)


@dataclass(slots=True)
class Employee:
    employee_id: str
    company_id: str
    name: str
    role: EmployeeRole = "employee"
    crew_id: Optional[str] = None
    crew_service_types: Optional[frozenset[str]] = None
    availability: Availability = "available"


@dataclass(frozen=True, slots=True)
class Crew:
    """A group of employees sharing a crew id, scheduled as a unit."""

    crew_id: str
    members: tuple[str, ...]
    service_types: frozenset[str]
    consistent: bool = True

    def can_perform(self, service_type: str) -> bool:
        return service_type in self.service_types


@dataclass(frozen=True, slots=True)
class BaseLocation:
    """Home base where a company's crews start and end their day."""

    company_id: str
    location: Coordinate
    address: str = ""
    workday_start: str = "08:00"


@dataclass(frozen=True, slots=True)
class Stop:
    customer_id: str
    customer_name: str
    address: str
    location: Coordinate
    sequence: int
    status: StopStatus = "pending"
    planned_arrival: Optional[datetime] = None
    planned_departure: Optional[datetime] = None
    planned_drive_minutes: float = 0.0
    actual_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    drive_minutes: Optional[float] = None
    work_minutes: Optional[float] = None
    paused_at: Optional[datetime] = None
    paused_minutes: float = 0.0


@dataclass(frozen=True, slots=True)
class DailyRoute:
    """Ordered stops for one crew on one date. Replaced, never edited in place."""

    route_id: str
    company_id: str
    crew_id: str
    service_date: date
    stops: tuple[Stop, ...]
    path: tuple[Coordinate, ...]
    total_distance_km: float
    travel_minutes: float
    estimated_duration_minutes: float
    created_at: datetime
    degraded: bool = False
    cache_key: Optional[str] = None

    @property
    def planned_start(self) -> Optional[datetime]:
        if not self.stops or self.stops[0].planned_arrival is None:
            return None
        first = self.stops[0]
        return first.planned_arrival - timedelta(minutes=first.planned_drive_minutes)


@dataclass(frozen=True, slots=True)
class ScheduleStatus:
    classification: ScheduleClassification
    minutes_delta: float
    estimated_finish_time: datetime
    stops_remaining: int
    stops_completed: int
    total_stops: int
    message: str = ""
    progress_percentage: int = 0


@dataclass(frozen=True, slots=True)
class StopTiming:
    customer_id: str
    drive_minutes: Optional[float]
    work_minutes: Optional[float]
    efficiency: Optional[float]


@dataclass(slots=True)
class RouteTimeBreakdown:
    drive_minutes: float
    work_minutes: float
    break_minutes: float
    efficiency: Optional[float]
    stops: list[StopTiming]


@dataclass(frozen=True, slots=True)
class RouteMetrics:
    """Time totals recorded for one crew route once the day is worked."""

    company_id: str
    crew_id: str
    route_id: str
    service_date: date
    drive_minutes: float
    work_minutes: float
    break_minutes: float
    efficiency: Optional[float]
    customer_stops: int
    stops: tuple[StopTiming, ...]
    recorded_at: datetime


@dataclass(frozen=True, slots=True)
class UnassignedCustomer:
    customer_id: str
    reason: UnassignedReason
    service_types: tuple[str, ...] = ()


@dataclass(slots=True)
class CompanySchedule:
    company_id: str
    service_date: date
    routes: dict[str, DailyRoute]
    unassigned: list[UnassignedCustomer]
    failures: dict[str, str] = field(default_factory=dict)
