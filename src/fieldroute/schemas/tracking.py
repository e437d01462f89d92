"""Live tracking request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ScheduleStatusModel(BaseModel):
    route_id: str
    crew_id: str
    classification: Literal["ahead", "on_schedule", "behind"]
    minutes_delta: float = Field(..., ge=0)
    message: str
    progress_percentage: int
    stops_completed: int
    stops_remaining: int
    total_stops: int
    estimated_finish_time: datetime
    significantly_delayed: bool
    next_stop: Optional[str] = None
    next_stop_eta: Optional[datetime] = None


class StopTimingModel(BaseModel):
    customer_id: str
    drive_minutes: Optional[float] = None
    work_minutes: Optional[float] = None
    efficiency: Optional[float] = None


class RouteTimingResponse(BaseModel):
    route_id: str
    drive_minutes: float
    work_minutes: float
    break_minutes: float
    efficiency: Optional[float] = None
    drive_percentage: float
    work_percentage: float
    average_minutes_per_stop: float
    total_time: str
    stops: List[StopTimingModel]


class StopUpdateRequest(BaseModel):
    status: Literal["in_progress", "completed", "skipped"]
    at: Optional[datetime] = Field(default=None, description="Event time; defaults to now.")


class StopPauseRequest(BaseModel):
    at: Optional[datetime] = Field(default=None, description="Event time; defaults to now.")


class PositionReport(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    at: Optional[datetime] = Field(default=None, description="Time of the fix; defaults to now.")


class PositionResponse(BaseModel):
    arrived_at: Optional[str] = Field(default=None, description="Customer id of the stop marked in progress, if any.")
    nearest_stop: Optional[str] = None
    nearest_distance_meters: Optional[float] = None


class RouteMetricsModel(BaseModel):
    company_id: str
    crew_id: str
    route_id: str
    service_date: date
    drive_minutes: float
    work_minutes: float
    break_minutes: float
    efficiency: Optional[float] = None
    customer_stops: int
    recorded_at: datetime
    stops: List[StopTimingModel]
