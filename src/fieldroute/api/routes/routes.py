"""Routing endpoints."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status

from ...errors import CapabilityError, ProviderError
from ...models.domain import Coordinate
from ...schemas.routing import (
    CompanyScheduleModel,
    DailyRouteModel,
    GenerateRoutesRequest,
    NotifyChangedRequest,
    ReconcileRequest,
    ReconcileResponse,
    TravelEstimateRequest,
    TravelEstimateResponse,
)
from ...services.outputs.routing_formatter import company_schedule_to_json, daily_route_to_json
from ...services.routing.service import RouteGenerationService, get_route_service
from ...services.routing.travel import call_with_timeout

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routes", tags=["routes"])


@router.post("/generate", response_model=CompanyScheduleModel, status_code=status.HTTP_200_OK)
def generate(
    payload: GenerateRoutesRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    service_date = payload.service_date or date.today()
    try:
        schedule = service.generate_for_company(
            payload.company_id,
            service_date,
            require_full_coverage=payload.require_full_coverage,
        )
        if payload.persist and not service.persist:
            service.save_schedule(schedule)
        return company_schedule_to_json(schedule)
    except CapabilityError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "customer_ids": list(exc.customer_ids)},
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(f"Error generating routes for {payload.company_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate routes: {str(exc)}",
        ) from exc


@router.post("/notify", status_code=status.HTTP_202_ACCEPTED)
def notify(
    payload: NotifyChangedRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    service.notify_changed(payload.company_id)
    return {"queued": payload.company_id, "pending": service.pending_companies()}


@router.post("/reconcile", response_model=ReconcileResponse, status_code=status.HTTP_200_OK)
def reconcile(
    payload: ReconcileRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    service_date = payload.service_date or date.today()
    try:
        schedules = service.reconcile(service_date)
    except Exception as exc:
        logger.exception(f"Error reconciling routes for {service_date}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to reconcile routes: {str(exc)}",
        ) from exc
    return {
        "service_date": service_date,
        "schedules": [company_schedule_to_json(schedules[company_id]) for company_id in sorted(schedules)],
    }


@router.post("/travel-estimate", response_model=TravelEstimateResponse, status_code=status.HTTP_200_OK)
def travel_estimate(
    payload: TravelEstimateRequest,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    """Travel legs for waypoints visited in the given order."""
    base = Coordinate(payload.base.latitude, payload.base.longitude)
    waypoints = [Coordinate(w.latitude, w.longitude) for w in payload.waypoints]
    provider = service.provider
    try:
        estimate = call_with_timeout(
            lambda: provider.route(base, waypoints, return_to_base=payload.return_to_base)
        )
    except ProviderError as exc:
        logger.warning(f"Travel estimate unavailable: {exc}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "provider": provider.name,
        "legs": [
            {"duration_minutes": leg.duration_minutes, "distance_meters": leg.distance_meters}
            for leg in estimate.legs
        ],
        "total_duration_minutes": estimate.total_duration_minutes,
        "total_distance_meters": estimate.total_distance_meters,
    }


@router.get("/{company_id}/{crew_id}/{service_date}", response_model=DailyRouteModel, status_code=status.HTTP_200_OK)
def get_crew_route(
    company_id: str,
    crew_id: str,
    service_date: date,
    service: RouteGenerationService = Depends(get_route_service),
) -> dict:
    try:
        route = service.crew_route(company_id, crew_id, service_date)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if route is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No route for crew {crew_id} on {service_date.isoformat()}",
        )
    return daily_route_to_json(route)
