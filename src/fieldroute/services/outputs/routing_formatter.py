"""Serializers for routing outputs."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime
from typing import Optional, Sequence

from ...models.domain import CompanySchedule, DailyRoute, RouteMetrics, Stop, StopTiming


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def stop_to_json(stop: Stop) -> dict:
    return {
        "customer_id": stop.customer_id,
        "customer_name": stop.customer_name,
        "address": stop.address,
        "latitude": stop.location.latitude,
        "longitude": stop.location.longitude,
        "sequence": stop.sequence,
        "status": stop.status,
        "planned_arrival": _iso(stop.planned_arrival),
        "planned_departure": _iso(stop.planned_departure),
        "planned_drive_minutes": round(stop.planned_drive_minutes, 2),
        "actual_arrival": _iso(stop.actual_arrival),
        "actual_departure": _iso(stop.actual_departure),
        "drive_minutes": stop.drive_minutes,
        "work_minutes": stop.work_minutes,
        "paused_at": _iso(stop.paused_at),
        "paused_minutes": round(stop.paused_minutes, 2),
    }


def daily_route_to_json(route: DailyRoute) -> dict:
    return {
        "route_id": route.route_id,
        "company_id": route.company_id,
        "crew_id": route.crew_id,
        "service_date": route.service_date.isoformat(),
        "total_distance_km": route.total_distance_km,
        "travel_minutes": route.travel_minutes,
        "estimated_duration_minutes": route.estimated_duration_minutes,
        "degraded": route.degraded,
        "cache_key": route.cache_key,
        "created_at": route.created_at.isoformat(),
        "customer_count": len(route.stops),
        "stops": [stop_to_json(stop) for stop in route.stops],
        "path": [[point.latitude, point.longitude] for point in route.path],
    }


def company_schedule_to_json(schedule: CompanySchedule) -> dict:
    return {
        "company_id": schedule.company_id,
        "service_date": schedule.service_date.isoformat(),
        "routes": [daily_route_to_json(route) for _, route in sorted(schedule.routes.items())],
        "unassigned": [
            {
                "customer_id": entry.customer_id,
                "reason": entry.reason,
                "service_types": list(entry.service_types),
            }
            for entry in schedule.unassigned
        ],
        "failures": dict(schedule.failures),
    }


def daily_routes_to_csv(routes: Sequence[DailyRoute]) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "route_id",
        "crew_id",
        "service_date",
        "sequence",
        "customer_id",
        "customer_name",
        "status",
        "planned_arrival",
        "planned_departure",
        "planned_drive_minutes",
        "total_distance_km",
        "estimated_duration_minutes",
        "degraded",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for route in routes:
        for stop in route.stops:
            writer.writerow(
                {
                    "route_id": route.route_id,
                    "crew_id": route.crew_id,
                    "service_date": route.service_date.isoformat(),
                    "sequence": stop.sequence,
                    "customer_id": stop.customer_id,
                    "customer_name": stop.customer_name,
                    "status": stop.status,
                    "planned_arrival": _iso(stop.planned_arrival),
                    "planned_departure": _iso(stop.planned_departure),
                    "planned_drive_minutes": round(stop.planned_drive_minutes, 2),
                    "total_distance_km": route.total_distance_km,
                    "estimated_duration_minutes": route.estimated_duration_minutes,
                    "degraded": route.degraded,
                }
            )
    return buffer.getvalue()


def _percent(ratio: Optional[float]) -> Optional[float]:
    return round(ratio * 100, 1) if ratio is not None else None


def route_metrics_to_json(metrics: RouteMetrics) -> dict:
    return {
        "company_id": metrics.company_id,
        "crew_id": metrics.crew_id,
        "route_id": metrics.route_id,
        "service_date": metrics.service_date.isoformat(),
        "drive_minutes": metrics.drive_minutes,
        "work_minutes": metrics.work_minutes,
        "break_minutes": metrics.break_minutes,
        "efficiency": metrics.efficiency,
        "customer_stops": metrics.customer_stops,
        "recorded_at": metrics.recorded_at.isoformat(),
        "stops": [
            {
                "customer_id": timing.customer_id,
                "drive_minutes": timing.drive_minutes,
                "work_minutes": timing.work_minutes,
                "efficiency": timing.efficiency,
            }
            for timing in metrics.stops
        ],
    }


def route_metrics_from_json(payload: dict) -> RouteMetrics:
    return RouteMetrics(
        company_id=payload["company_id"],
        crew_id=payload["crew_id"],
        route_id=payload["route_id"],
        service_date=date.fromisoformat(payload["service_date"]),
        drive_minutes=float(payload["drive_minutes"]),
        work_minutes=float(payload["work_minutes"]),
        break_minutes=float(payload["break_minutes"]),
        efficiency=payload.get("efficiency"),
        customer_stops=int(payload["customer_stops"]),
        stops=tuple(
            StopTiming(
                customer_id=item["customer_id"],
                drive_minutes=item.get("drive_minutes"),
                work_minutes=item.get("work_minutes"),
                efficiency=item.get("efficiency"),
            )
            for item in payload.get("stops", [])
        ),
        recorded_at=datetime.fromisoformat(payload["recorded_at"]),
    )


def route_metrics_to_csv(records: Sequence[RouteMetrics]) -> str:
    """One summary row per route followed by a per-stop breakdown section."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        [
            "Date",
            "Crew ID",
            "Route ID",
            "Drive Time (min)",
            "Work Time (min)",
            "Break Time (min)",
            "Efficiency (%)",
            "Customer Stops",
        ]
    )
    for metrics in records:
        writer.writerow(
            [
                metrics.service_date.isoformat(),
                metrics.crew_id,
                metrics.route_id,
                metrics.drive_minutes,
                metrics.work_minutes,
                metrics.break_minutes,
                _percent(metrics.efficiency),
                metrics.customer_stops,
            ]
        )

    writer.writerow([])
    writer.writerow(["Detailed Stop Breakdown"])
    writer.writerow(["Date", "Crew ID", "Customer ID", "Drive Time (min)", "Work Time (min)", "Efficiency (%)"])
    for metrics in records:
        for timing in metrics.stops:
            writer.writerow(
                [
                    metrics.service_date.isoformat(),
                    metrics.crew_id,
                    timing.customer_id,
                    timing.drive_minutes,
                    timing.work_minutes,
                    _percent(timing.efficiency),
                ]
            )
    return buffer.getvalue()
