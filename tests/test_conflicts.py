from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from artl_lims import main as app_main
from artl_lims.infra import db, events
from artl_lims.services.conflict_service import summarize_conflicts


@pytest.fixture()
def conflict_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "conflict_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _seed(client: TestClient) -> dict[str, int]:
    company = client.post("/companies", json={"name": "Acme Relays"}).json()
    sr = client.post(
        "/service-requests",
        json={"jobCardNumber": "ARTL-RF-261019-01-01-01", "companyId": company["id"], "productName": "Relay"},
    ).json()
    bed = client.post("/test-beds", json={"name": "EMI Chamber"}).json()
    other_bed = client.post("/test-beds", json={"name": "Surge Bench"}).json()
    employee = client.post("/employees", json={"name": "Priya", "email": "priya@artl.example"}).json()
    task = client.post(
        "/testbed-tasks",
        json={
            "serviceRequestId": sr["id"],
            "testbedId": bed["id"],
            "assignedEmployeeId": employee["id"],
            "scheduledStartDate": "2026-10-20T10:00:00Z",
            "scheduledEndDate": "2026-10-20T12:00:00Z",
        },
    )
    assert task.status_code == 201
    return {
        "bed": bed["id"],
        "other_bed": other_bed["id"],
        "employee": employee["id"],
        "task": task.json()["id"],
        "service_request": sr["id"],
    }


def _check(client: TestClient, **body: object) -> dict:
    response = client.post("/testbed-tasks/check-conflicts", json=body)
    assert response.status_code == 200
    return response.json()


def test_overlapping_window_conflicts(conflict_client: TestClient) -> None:
    ids = _seed(conflict_client)
    result = _check(
        conflict_client,
        testbedId=ids["bed"],
        scheduledStartDate="2026-10-20T11:00:00Z",
        scheduledEndDate="2026-10-20T13:00:00Z",
    )
    assert result["conflicts"] is True
    assert [item["id"] for item in result["testbedConflicts"]] == [ids["task"]]
    assert result["testbedConflicts"][0]["jobCardNumber"] == "ARTL-RF-261019-01-01-01"
    assert result["employeeConflicts"] == []
    assert result["message"] == "Test bed has 1 conflicting task(s) during this time period"


def test_touching_windows_do_not_conflict(conflict_client: TestClient) -> None:
    ids = _seed(conflict_client)
    result = _check(
        conflict_client,
        testbedId=ids["bed"],
        scheduledStartDate="2026-10-20T12:00:00Z",
        scheduledEndDate="2026-10-20T13:00:00Z",
    )
    assert result["conflicts"] is False
    assert result["message"] == "No scheduling conflicts detected"


def test_employee_conflict_on_another_bed(conflict_client: TestClient) -> None:
    ids = _seed(conflict_client)
    result = _check(
        conflict_client,
        testbedId=ids["other_bed"],
        employeeId=ids["employee"],
        scheduledStartDate="2026-10-20T09:00:00Z",
        scheduledEndDate="2026-10-20T10:30:00Z",
    )
    assert result["testbedConflicts"] == []
    assert [item["id"] for item in result["employeeConflicts"]] == [ids["task"]]
    assert result["message"] == "Employee has 1 conflicting task(s) during this time period"


def test_excluded_and_finished_tasks_are_ignored(conflict_client: TestClient) -> None:
    ids = _seed(conflict_client)
    window = {"scheduledStartDate": "2026-10-20T10:30:00Z", "scheduledEndDate": "2026-10-20T11:00:00Z"}

    excluded = _check(conflict_client, testbedId=ids["bed"], excludeTaskId=ids["task"], **window)
    assert excluded["conflicts"] is False

    assert conflict_client.post(f"/testbed-tasks/{ids['task']}/start").status_code == 200
    running = _check(conflict_client, testbedId=ids["bed"], **window)
    assert running["conflicts"] is True

    assert conflict_client.post(f"/testbed-tasks/{ids['task']}/complete").status_code == 200
    finished = _check(conflict_client, testbedId=ids["bed"], **window)
    assert finished["conflicts"] is False


def test_conflict_check_errors(conflict_client: TestClient) -> None:
    ids = _seed(conflict_client)
    window = {"scheduledStartDate": "2026-10-20T10:00:00Z", "scheduledEndDate": "2026-10-20T11:00:00Z"}

    cases = [
        ({**window}, 400, "MISSING_TESTBED_ID"),
        ({"testbedId": ids["bed"], "scheduledEndDate": window["scheduledEndDate"]}, 400, "MISSING_SCHEDULED_START_DATE"),
        ({"testbedId": ids["bed"], "scheduledStartDate": "yesterday", "scheduledEndDate": window["scheduledEndDate"]}, 400, "INVALID_SCHEDULED_START_DATE"),
        (
            {"testbedId": ids["bed"], "scheduledStartDate": window["scheduledEndDate"], "scheduledEndDate": window["scheduledStartDate"]},
            400,
            "INVALID_DATE_RANGE",
        ),
        ({"testbedId": 999, **window}, 404, "TESTBED_NOT_FOUND"),
        ({"testbedId": ids["bed"], "employeeId": 999, **window}, 404, "EMPLOYEE_NOT_FOUND"),
    ]
    for body, status_code, code in cases:
        response = conflict_client.post("/testbed-tasks/check-conflicts", json=body)
        assert response.status_code == status_code, body
        assert response.json()["detail"]["code"] == code


def test_summary_messages() -> None:
    assert summarize_conflicts(0, 0) == "No scheduling conflicts detected"
    assert summarize_conflicts(2, 3) == (
        "Test bed has 2 conflicting task(s) and employee has 3 conflicting task(s) during this time period"
    )
    assert summarize_conflicts(0, 1) == "Employee has 1 conflicting task(s) during this time period"
