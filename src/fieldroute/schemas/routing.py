"""Routing request/response schemas."""

from __future__ import annotations

from datetime import date as Date
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class GenerateRoutesRequest(BaseModel):
    company_id: str
    service_date: Optional[Date] = Field(default=None, description="Defaults to today.")
    persist: bool = Field(default=False, description="Also write routes as JSON/CSV under the data root.")
    require_full_coverage: bool = Field(
        default=False,
        description="Reject the request when some due customers need a service type no crew performs.",
    )


class NotifyChangedRequest(BaseModel):
    company_id: str


class ReconcileRequest(BaseModel):
    service_date: Optional[Date] = None


class CoordinateModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TravelEstimateRequest(BaseModel):
    base: CoordinateModel
    waypoints: List[CoordinateModel] = Field(default_factory=list)
    return_to_base: bool = True


class LegModel(BaseModel):
    duration_minutes: float
    distance_meters: float


class TravelEstimateResponse(BaseModel):
    provider: str
    legs: List[LegModel]
    total_duration_minutes: float
    total_distance_meters: float


class RouteStopModel(BaseModel):
    customer_id: str
    customer_name: str
    address: str
    latitude: float
    longitude: float
    sequence: int
    status: Literal["pending", "in_progress", "completed", "skipped"]
    planned_arrival: Optional[datetime] = None
    planned_departure: Optional[datetime] = None
    planned_drive_minutes: float
    actual_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None
    drive_minutes: Optional[float] = None
    work_minutes: Optional[float] = None
    paused_at: Optional[datetime] = None
    paused_minutes: float = 0.0


class DailyRouteModel(BaseModel):
    route_id: str
    company_id: str
    crew_id: str
    service_date: Date
    total_distance_km: float
    travel_minutes: float
    estimated_duration_minutes: float
    degraded: bool
    cache_key: Optional[str] = None
    created_at: datetime
    customer_count: int
    stops: List[RouteStopModel]
    path: List[List[float]]


class UnassignedCustomerModel(BaseModel):
    customer_id: str
    reason: Literal["no_capable_crew", "invalid_coordinates", "capacity"]
    service_types: List[str]


class CompanyScheduleModel(BaseModel):
    company_id: str
    service_date: Date
    routes: List[DailyRouteModel]
    unassigned: List[UnassignedCustomerModel]
    failures: Dict[str, str]


class ReconcileResponse(BaseModel):
    service_date: Date
    schedules: List[CompanyScheduleModel]
