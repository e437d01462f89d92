"""Live schedule tracking endpoints."""

from __future__ import annotations

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...errors import ConcurrencyConflict
from ...models.domain import Coordinate, DailyRoute
from ...schemas.routing import DailyRouteModel
from ...schemas.tracking import (
    PositionReport,
    PositionResponse,
    RouteMetricsModel,
    RouteTimingResponse,
    ScheduleStatusModel,
    StopPauseRequest,
    StopUpdateRequest,
)
from ...services.outputs.routing_formatter import daily_route_to_json, route_metrics_to_csv, route_metrics_to_json
from ...services.routing.service import RouteGenerationService, get_route_service
from ...services.tracking import (
    format_duration,
    nearest_stop,
    performance_summary,
    route_time_breakdown,
    schedule_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracking", tags=["tracking"])


def _require_route(
    service: RouteGenerationService,
    company_id: str,
    crew_id: str,
    service_date: date,
) -> DailyRoute:
    try:
        route = service.crew_route(company_id, crew_id, service_date)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if route is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No route for crew {crew_id} on {service_date.isoformat()}",
        )
    return route


def _apply(action, customer_id: str, crew_id: str) -> dict:
    try:
        route = action()
    except ConcurrencyConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(f"Error updating stop {customer_id} on {crew_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update stop: {str(exc)}",
        ) from exc
    return daily_route_to_json(route)


@router.get("/{company_id}/{crew_id}/{service_date}/status", response_model=ScheduleStatusModel)
def get_status(
    company_id: str,
    crew_id: str,
    service_date: date,
    now: datetime | None = None,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    route = _require_route(service, company_id, crew_id, service_date)
    return schedule_summary(route, now or datetime.now())


@router.get("/{company_id}/{crew_id}/{service_date}/timing", response_model=RouteTimingResponse)
def get_timing(
    company_id: str,
    crew_id: str,
    service_date: date,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    route = _require_route(service, company_id, crew_id, service_date)
    breakdown = route_time_breakdown(route)
    summary = performance_summary(route)
    return {
        "route_id": route.route_id,
        "drive_minutes": breakdown.drive_minutes,
        "work_minutes": breakdown.work_minutes,
        "break_minutes": breakdown.break_minutes,
        "efficiency": breakdown.efficiency,
        "drive_percentage": round(summary.drive_percentage, 1),
        "work_percentage": round(summary.work_percentage, 1),
        "average_minutes_per_stop": round(summary.average_minutes_per_stop, 1),
        "total_time": format_duration(summary.total_minutes),
        "stops": [
            {
                "customer_id": timing.customer_id,
                "drive_minutes": timing.drive_minutes,
                "work_minutes": timing.work_minutes,
                "efficiency": timing.efficiency,
            }
            for timing in breakdown.stops
        ],
    }


@router.post(
    "/{company_id}/{crew_id}/{service_date}/stops/{customer_id}",
    response_model=DailyRouteModel,
    status_code=status.HTTP_200_OK,
)
def update_stop(
    company_id: str,
    crew_id: str,
    service_date: date,
    customer_id: str,
    payload: StopUpdateRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    """Record a crew arriving at, completing or skipping a stop."""
    _require_route(service, company_id, crew_id, service_date)
    return _apply(
        lambda: service.update_stop(company_id, crew_id, service_date, customer_id, payload.status, payload.at),
        customer_id,
        crew_id,
    )


@router.post("/{company_id}/{crew_id}/{service_date}/stops/{customer_id}/pause", response_model=DailyRouteModel)
def pause_stop(
    company_id: str,
    crew_id: str,
    service_date: date,
    customer_id: str,
    payload: StopPauseRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    _require_route(service, company_id, crew_id, service_date)
    return _apply(
        lambda: service.set_paused(company_id, crew_id, service_date, customer_id, True, payload.at),
        customer_id,
        crew_id,
    )


@router.post("/{company_id}/{crew_id}/{service_date}/stops/{customer_id}/resume", response_model=DailyRouteModel)
def resume_stop(
    company_id: str,
    crew_id: str,
    service_date: date,
    customer_id: str,
    payload: StopPauseRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    _require_route(service, company_id, crew_id, service_date)
    return _apply(
        lambda: service.set_paused(company_id, crew_id, service_date, customer_id, False, payload.at),
        customer_id,
        crew_id,
    )


@router.post("/{company_id}/{crew_id}/{service_date}/position", response_model=PositionResponse)
def report_position(
    company_id: str,
    crew_id: str,
    service_date: date,
    payload: PositionReport,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    """Record a crew GPS fix; arriving within the radius of the next stop starts it."""
    _require_route(service, company_id, crew_id, service_date)
    position = Coordinate(payload.latitude, payload.longitude)
    try:
        route, arrived = service.report_position(company_id, crew_id, service_date, position, payload.at)
    except ConcurrencyConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    closest = nearest_stop(position, [stop for stop in route.stops if stop.status == "pending"])
    return {
        "arrived_at": arrived.customer_id if arrived else None,
        "nearest_stop": closest[0].customer_id if closest else None,
        "nearest_distance_meters": round(closest[1], 1) if closest else None,
    }


@router.post("/{company_id}/{crew_id}/{service_date}/metrics", response_model=RouteMetricsModel)
def record_metrics(
    company_id: str,
    crew_id: str,
    service_date: date,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    """Snapshot the route's drive, work and break totals to the metrics store."""
    route = _require_route(service, company_id, crew_id, service_date)
    try:
        metrics = service.record_metrics(route)
    except OSError as exc:
        logger.exception(f"Error recording metrics for {route.route_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record metrics: {str(exc)}",
        ) from exc
    return route_metrics_to_json(metrics)


@router.get("/{company_id}/{service_date}/metrics.csv")
def export_metrics(
    company_id: str,
    service_date: date,
    service: RouteGenerationService = Depends(get_route_service),
) -> Response:
    """Recorded metrics for every crew of a company on one date, as CSV."""
    records = service.load_metrics(company_id, service_date)
    if not records:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No metrics recorded for {company_id} on {service_date.isoformat()}",
        )
    filename = f"route-metrics-{company_id}-{service_date.isoformat()}.csv"
    return Response(
        content=route_metrics_to_csv(records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
