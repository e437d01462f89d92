from datetime import date
from pathlib import Path

import pytest

from src.fieldroute.persistence.filesystem import FileStorage
from src.fieldroute.persistence.roster import (
    InMemoryRosterSource,
    SupabaseRosterSource,
    customer_from_row,
    employee_from_row,
)


def test_file_storage_creates_route_directory(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.route_directory("acme", date(2024, 6, 10))

    assert run_dir.exists()
    assert run_dir.is_dir()
    assert run_dir == tmp_path.resolve() / "outputs" / "routes" / "acme" / "2024-06-10"


def test_file_storage_writes_json_and_csv(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.route_directory("acme", date(2024, 6, 10))

    summary_path = run_dir / "schedule.json"
    routes_path = run_dir / "routes.csv"

    storage.write_json(summary_path, {"hello": "world"})
    storage.write_csv(routes_path, "a,b\n1,2\n")

    assert summary_path.read_text(encoding="utf-8") == '{\n  "hello": "world"\n}'
    assert storage.read_json(summary_path) == {"hello": "world"}
    assert routes_path.read_text(encoding="utf-8") == "a,b\n1,2\n"


class FakeQuery:
    def __init__(self, rows):
        self.rows = rows
        self.filters = {}

    def select(self, *_):
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def execute(self):
        data = [row for row in self.rows if all(row.get(k) == v for k, v in self.filters.items())]
        return type("Response", (), {"data": data})()


class FakeSupabase:
    def __init__(self, tables):
        self.tables = tables

    def table(self, name):
        return FakeQuery(self.tables.get(name, []))


def test_supabase_roster_maps_rows_to_domain_objects():
    client = FakeSupabase(
        {
            "customers": [
                {
                    "customer_id": "C1",
                    "company_id": "acme",
                    "name": "Jane",
                    "address": "1 Elm St",
                    "latitude": "40.01",
                    "longitude": -75.0,
                    "last_service_date": "2024-06-03T09:00:00+00:00",
                    "services": [
                        {"service_type": "mowing", "frequency": "weekly", "preferred_days": ["Monday"]},
                        {"service_type": "aeration", "frequency": "one-time"},
                    ],
                },
                {"customer_id": "C2", "company_id": "other", "latitude": 1, "longitude": 1},
            ],
            "employees": [
                {"employee_id": "e1", "company_id": "acme", "crew_id": "crew-a", "crew_service_types": ["mowing"]},
                {"employee_id": "e2", "company_id": "acme", "crew_id": "", "crew_service_types": None},
            ],
            "companies": [
                {"company_id": "acme", "base_latitude": 40.0, "base_longitude": -75.0, "base_address": "HQ"},
            ],
        }
    )
    source = SupabaseRosterSource(client)

    customers = source.customers("acme")
    employees = source.employees("acme")
    base = source.base_location("acme")

    assert [c.customer_id for c in customers] == ["C1"]
    customer = customers[0]
    assert customer.location.latitude == pytest.approx(40.01)
    assert customer.last_service_date == date(2024, 6, 3)
    assert customer.services[0].frequency_days == 7
    assert customer.services[0].preferred_days == frozenset({"monday"})
    assert customer.services[1].frequency_days is None
    assert employees[0].crew_service_types == frozenset({"mowing"})
    assert employees[1].crew_id is None
    assert employees[1].crew_service_types is None
    assert base.address == "HQ"
    assert base.workday_start == "08:00"
    assert source.base_location("missing") is None


def test_customer_without_coordinates_maps_to_invalid_placeholder():
    customer = customer_from_row({"customer_id": "C1", "company_id": "acme"})

    assert customer.location.as_tuple() == (0.0, 0.0)
    assert customer.status == "active"


def test_employee_row_defaults():
    employee = employee_from_row({"id": "e9", "company_id": "acme"})

    assert employee.employee_id == "e9"
    assert employee.role == "employee"
    assert employee.availability == "available"


def test_in_memory_roster_notifies_subscribers():
    source = InMemoryRosterSource()
    seen = []
    unsubscribe = source.subscribe(seen.append)

    source.upsert_employee(employee_from_row({"employee_id": "e1", "company_id": "acme"}))
    unsubscribe()
    source.remove_customer("acme", "C1")

    assert seen == ["acme"]
    assert len(source.employees("acme")) == 1


def test_last_service_date_falls_back_to_service_history():
    customer = customer_from_row(
        {
            "customer_id": "C1",
            "company_id": "acme",
            "latitude": 40.0,
            "longitude": -75.0,
            "service_history": [
                {"id": "r2", "service_date": "2024-06-01", "status": "completed"},
                {"id": "r3", "service_date": "2024-06-08", "status": "skipped"},
                {"id": "r1", "service_date": "2024-05-20"},
            ],
        }
    )

    assert [r.record_id for r in customer.service_history] == ["r1", "r2", "r3"]
    assert customer.last_service_date == date(2024, 6, 1)
