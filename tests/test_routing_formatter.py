import csv
import io
from datetime import date, datetime

from src.fieldroute.models.domain import RouteMetrics, StopTiming
from src.fieldroute.services.outputs.routing_formatter import (
    route_metrics_from_json,
    route_metrics_to_csv,
    route_metrics_to_json,
)


def _metrics(crew_id: str, efficiency=0.75) -> RouteMetrics:
    return RouteMetrics(
        company_id="acme",
        crew_id=crew_id,
        route_id=f"acme_{crew_id}_2024-06-10",
        service_date=date(2024, 6, 10),
        drive_minutes=20.0,
        work_minutes=60.0,
        break_minutes=5.0,
        efficiency=efficiency,
        customer_stops=2,
        stops=(
            StopTiming(customer_id="C1", drive_minutes=0.0, work_minutes=30.0, efficiency=1.0),
            StopTiming(customer_id="C2", drive_minutes=20.0, work_minutes=30.0, efficiency=0.6),
        ),
        recorded_at=datetime(2024, 6, 10, 18, 0),
    )


def test_metrics_csv_has_summary_then_stop_breakdown():
    rows = list(csv.reader(io.StringIO(route_metrics_to_csv([_metrics("crew-a"), _metrics("crew-b", None)]))))

    assert rows[0][:3] == ["Date", "Crew ID", "Route ID"]
    assert rows[1] == ["2024-06-10", "crew-a", "acme_crew-a_2024-06-10", "20.0", "60.0", "5.0", "75.0", "2"]
    assert rows[2][6] == ""
    assert rows[3] == []
    assert rows[4] == ["Detailed Stop Breakdown"]
    assert rows[5] == ["Date", "Crew ID", "Customer ID", "Drive Time (min)", "Work Time (min)", "Efficiency (%)"]
    assert [row[1:3] for row in rows[6:]] == [
        ["crew-a", "C1"],
        ["crew-a", "C2"],
        ["crew-b", "C1"],
        ["crew-b", "C2"],
    ]
    assert rows[7][5] == "60.0"


def test_metrics_json_is_read_back_unchanged():
    metrics = _metrics("crew-a")

    assert route_metrics_from_json(route_metrics_to_json(metrics)) == metrics
