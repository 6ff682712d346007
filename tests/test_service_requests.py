from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine

from artl_lims import main as app_main
from artl_lims.api.routers import service_requests
from artl_lims.infra import db, events
from artl_lims.infra.clock import FrozenClock
from artl_lims.services.service_request_service import ServiceRequestService

START = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture()
def sr_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    clock: FrozenClock,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "service_request_test.db"
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
    app_main.app.dependency_overrides[service_requests.get_service_request_service] = (
        lambda: ServiceRequestService(clock=clock)
    )
    client = TestClient(app_main.app)
    yield client
    client.close()
    app_main.app.dependency_overrides.clear()


def _create_company(client: TestClient) -> int:
    response = client.post("/companies", json={"name": "Acme Relays"})
    assert response.status_code == 201
    return response.json()["id"]


def _create_test_bed(client: TestClient, name: str = "EMI Chamber", status: str = "available") -> int:
    response = client.post("/test-beds", json={"name": name, "status": status})
    assert response.status_code == 201
    return response.json()["id"]


def _create_service_request(client: TestClient, company_id: int, **extra: object) -> dict:
    body = {
        "jobCardNumber": "ARTL-RF-261019-01-01-01",
        "companyId": company_id,
        "productName": "Relay",
        **extra,
    }
    response = client.post("/service-requests", json=body, headers={"X-Actor": "Front Desk"})
    assert response.status_code == 201
    return response.json()


def _change_status(client: TestClient, service_request_id: int, status: str, **extra: object) -> dict:
    response = client.post(f"/service-requests/{service_request_id}/status", json={"status": status, **extra})
    assert response.status_code == 200
    return response.json()


def _bed_status(client: TestClient, testbed_id: int) -> str:
    return client.get("/test-beds", params={"id": testbed_id}).json()["status"]


def test_create_defaults_and_initial_history(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    sr = _create_service_request(sr_client, company_id, productName="  Relay  ")
    assert sr["status"] == "requested"
    assert sr["productName"] == "Relay"
    assert sr["dcVerified"] is False

    history = sr_client.get(f"/service-requests/{sr['id']}/history").json()
    assert len(history) == 1
    assert history[0]["status"] == "requested"
    assert history[0]["notes"] == "Service request created"
    assert history[0]["changedBy"] == "Front Desk"

    logs = sr_client.get(
        "/activity-logs",
        params={"entityType": "service_request", "entityId": sr["id"]},
    ).json()
    assert [entry["action"] for entry in logs] == ["created"]
    assert logs[0]["metadata"]["jobCardNumber"] == "ARTL-RF-261019-01-01-01"


def test_create_validation(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    _create_service_request(sr_client, company_id)

    cases = [
        ({"companyId": company_id, "productName": "Relay"}, "MISSING_JOB_CARD_NUMBER"),
        ({"jobCardNumber": "ARTL-RF-261019-02-01-01", "companyId": company_id}, "MISSING_PRODUCT_NAME"),
        ({"jobCardNumber": "ARTL-RF-261019-02-01-01", "companyId": company_id, "productName": "  "}, "MISSING_PRODUCT_NAME"),
        ({"jobCardNumber": "ARTL-RF-261019-02-01-01", "companyId": 999, "productName": "Relay"}, "INVALID_COMPANY_ID"),
        ({"jobCardNumber": "ARTL-RF-261019-02-01-01", "companyId": "acme", "productName": "Relay"}, "INVALID_COMPANY_ID"),
        (
            {"jobCardNumber": "ARTL-RF-261019-02-01-01", "companyId": company_id, "productName": "Relay", "status": "shipped"},
            "INVALID_STATUS",
        ),
        ({"jobCardNumber": "ARTL-RF-261019-01-01-01", "companyId": company_id, "productName": "Relay"}, "DUPLICATE_JOB_CARD_NUMBER"),
    ]
    for body, code in cases:
        response = sr_client.post("/service-requests", json=body)
        assert response.status_code == 400, body
        assert response.json()["detail"]["code"] == code


def test_testing_start_date_is_stamped_once(sr_client: TestClient, clock: FrozenClock) -> None:
    company_id = _create_company(sr_client)
    sr = _create_service_request(sr_client, company_id)

    clock.advance(hours=1)
    first = _change_status(sr_client, sr["id"], "testing")
    assert first["testingStartDate"].startswith("2026-10-19T09:00:00")

    clock.advance(hours=1)
    _change_status(sr_client, sr["id"], "agreed")
    clock.advance(hours=1)
    again = _change_status(sr_client, sr["id"], "testing")
    assert again["testingStartDate"] == first["testingStartDate"]

    clock.advance(hours=1)
    done = _change_status(sr_client, sr["id"], "completed")
    assert done["completionDate"].startswith("2026-10-19T12:00:00")


def test_status_change_writes_history_and_activity(sr_client: TestClient, clock: FrozenClock) -> None:
    company_id = _create_company(sr_client)
    sr = _create_service_request(sr_client, company_id)

    clock.advance(minutes=5)
    _change_status(sr_client, sr["id"], "replied", notes="Quote sent", changedBy="Sales")
    clock.advance(minutes=5)
    _change_status(sr_client, sr["id"], "replied")

    history = sr_client.get(f"/service-requests/{sr['id']}/history").json()
    assert [row["status"] for row in history] == ["requested", "replied", "replied"]
    assert history[1]["notes"] == "Quote sent"
    assert history[1]["changedBy"] == "Sales"
    assert history[2]["changedBy"] == "System"

    changes = sr_client.get(
        "/activity-logs",
        params={"entityType": "service_request", "entityId": sr["id"], "action": "status_changed"},
    ).json()
    assert len(changes) == 1
    assert changes[0]["oldValue"] == "requested"
    assert changes[0]["newValue"] == "replied"
    assert changes[0]["performedBy"] == "Sales"


def test_status_endpoint_errors(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    sr = _create_service_request(sr_client, company_id)

    missing = sr_client.post(f"/service-requests/{sr['id']}/status", json={})
    assert missing.status_code == 400
    assert missing.json()["detail"]["code"] == "MISSING_STATUS"

    for blank in ("", "   "):
        response = sr_client.post(f"/service-requests/{sr['id']}/status", json={"status": blank})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MISSING_STATUS"

    invalid = sr_client.post(f"/service-requests/{sr['id']}/status", json={"status": "archived"})
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "INVALID_STATUS"

    unknown = sr_client.post("/service-requests/999/status", json={"status": "replied"})
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["code"] == "NOT_FOUND"

    history = sr_client.get("/service-requests/999/history")
    assert history.status_code == 404
    assert history.json()["detail"]["code"] == "SERVICE_REQUEST_NOT_FOUND"


def test_testing_status_occupies_assigned_bed(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    bed_id = _create_test_bed(sr_client)
    sr = _create_service_request(sr_client, company_id, assignedTestbedId=bed_id)

    _change_status(sr_client, sr["id"], "testing")
    assert _bed_status(sr_client, bed_id) == "in_use"

    _change_status(sr_client, sr["id"], "completed")
    assert _bed_status(sr_client, bed_id) == "available"


def test_bed_stays_busy_while_another_request_is_testing(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    bed_id = _create_test_bed(sr_client)
    first = _create_service_request(sr_client, company_id, assignedTestbedId=bed_id)
    second = _create_service_request(
        sr_client,
        company_id,
        jobCardNumber="ARTL-RF-261019-02-01-01",
        assignedTestbedId=bed_id,
    )
    _change_status(sr_client, first["id"], "testing")
    _change_status(sr_client, second["id"], "testing")

    _change_status(sr_client, first["id"], "completed")
    assert _bed_status(sr_client, bed_id) == "in_use"

    _change_status(sr_client, second["id"], "completed")
    assert _bed_status(sr_client, bed_id) == "available"


def test_maintenance_bed_is_left_alone(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    bed_id = _create_test_bed(sr_client, status="maintenance")
    sr = _create_service_request(sr_client, company_id, assignedTestbedId=bed_id)

    _change_status(sr_client, sr["id"], "testing")
    assert _bed_status(sr_client, bed_id) == "maintenance"
    _change_status(sr_client, sr["id"], "completed")
    assert _bed_status(sr_client, bed_id) == "maintenance"


def test_update_logs_fields_and_reassigns_bed(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    old_bed = _create_test_bed(sr_client, "EMI Chamber")
    new_bed = _create_test_bed(sr_client, "Surge Bench")
    sr = _create_service_request(sr_client, company_id, assignedTestbedId=old_bed)
    _change_status(sr_client, sr["id"], "testing")

    response = sr_client.put(
        "/service-requests",
        params={"id": sr["id"]},
        json={"assignedTestbedId": new_bed, "dcNumber": "DC-17", "productName": "Relay"},
        headers={"X-Actor": "Lab Manager"},
    )
    assert response.status_code == 200
    assert response.json()["assignedTestbedId"] == new_bed
    assert _bed_status(sr_client, old_bed) == "available"
    assert _bed_status(sr_client, new_bed) == "in_use"

    updates = sr_client.get(
        "/activity-logs",
        params={"entityType": "service_request", "entityId": sr["id"], "action": "updated"},
    ).json()
    assert sorted(entry["fieldName"] for entry in updates) == ["assignedTestbedId", "dcNumber"]
    assert all(entry["performedBy"] == "Lab Manager" for entry in updates)
    dc_entry = next(entry for entry in updates if entry["fieldName"] == "dcNumber")
    assert dc_entry["oldValue"] is None
    assert dc_entry["newValue"] == "DC-17"


def test_update_with_status_change_appends_history(sr_client: TestClient, clock: FrozenClock) -> None:
    company_id = _create_company(sr_client)
    sr = _create_service_request(sr_client, company_id)
    clock.advance(minutes=1)

    response = sr_client.put("/service-requests", params={"id": sr["id"]}, json={"status": "agreed"})
    assert response.status_code == 200
    assert response.json()["status"] == "agreed"

    history = sr_client.get(f"/service-requests/{sr['id']}/history").json()
    assert [row["status"] for row in history] == ["requested", "agreed"]

    duplicate = _create_service_request(sr_client, company_id, jobCardNumber="ARTL-RF-261019-02-01-01")
    clash = sr_client.put(
        "/service-requests",
        params={"id": duplicate["id"]},
        json={"jobCardNumber": "ARTL-RF-261019-01-01-01"},
    )
    assert clash.status_code == 400
    assert clash.json()["detail"]["code"] == "DUPLICATE_JOB_CARD_NUMBER"


def test_list_search_and_delete(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    relay = _create_service_request(sr_client, company_id)
    _create_service_request(sr_client, company_id, jobCardNumber="ARTL-RF-261019-02-01-01", productName="Inverter")

    found = sr_client.get("/service-requests", params={"search": "Invert"}).json()
    assert [item["productName"] for item in found] == ["Inverter"]
    by_company = sr_client.get("/service-requests", params={"companyId": company_id}).json()
    assert len(by_company) == 2

    deleted = sr_client.delete("/service-requests", params={"id": relay["id"]})
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Service request deleted successfully"
    assert deleted.json()["deletedRecord"]["id"] == relay["id"]

    assert sr_client.get("/service-requests", params={"id": relay["id"]}).status_code == 404
    orphaned = sr_client.get("/status-history", params={"serviceRequestId": relay["id"]}).json()
    assert orphaned == []


def test_delete_refuses_request_with_tasks(sr_client: TestClient) -> None:
    company_id = _create_company(sr_client)
    bed_id = _create_test_bed(sr_client)
    sr = _create_service_request(sr_client, company_id)
    task = sr_client.post("/testbed-tasks", json={"serviceRequestId": sr["id"], "testbedId": bed_id})
    assert task.status_code == 201

    response = sr_client.delete("/service-requests", params={"id": sr["id"]})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "CONSTRAINT_VIOLATION"
