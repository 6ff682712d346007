from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from artl_lims import main as app_main
from artl_lims.domain import models
from artl_lims.infra import db, events
from artl_lims.infra.audit import append_activity, field_changes


@pytest.fixture()
def audit_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "audit_test.db"
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


def _create_service_request(client: TestClient) -> int:
    company = client.post("/companies", json={"name": "Acme Relays"})
    assert company.status_code == 201
    response = client.post(
        "/service-requests",
        json={
            "jobCardNumber": "ARTL-RF-261019-01-01-01",
            "companyId": company.json()["id"],
            "productName": "Relay",
        },
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_field_changes_compares_text_forms() -> None:
    stamp = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
    before = {"quantity": 3, "dc_verified": False, "agreed_date": stamp.replace(tzinfo=None), "notes": None}
    after = {"quantity": 3, "dc_verified": True, "agreed_date": stamp, "notes": "rush"}
    assert field_changes(before, after) == [("dc_verified", False, True), ("notes", None, "rush")]


def test_append_activity_stringifies_values(audit_client: TestClient) -> None:
    stamp = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
    with Session(db.engine) as session:
        entry = append_activity(
            session,
            entity_type="service_request",
            entity_id=7,
            action="updated",
            at=stamp,
            performed_by=None,
            field_name="agreedDate",
            old_value=None,
            new_value=stamp,
        )
        session.commit()
        session.refresh(entry)
        assert entry.new_value == "2026-10-19T09:00:00+00:00"
        assert entry.old_value is None


def test_activity_log_create_and_filter(audit_client: TestClient) -> None:
    created = audit_client.post(
        "/activity-logs",
        json={
            "entityType": "report",
            "entityId": 42,
            "action": "exported",
            "performedBy": "Auditor",
            "metadata": {"format": "pdf"},
        },
    )
    assert created.status_code == 201
    body = created.json()
    assert body["metadata"] == {"format": "pdf"}
    assert body["performedBy"] == "Auditor"

    fetched = audit_client.get("/activity-logs", params={"id": body["id"]})
    assert fetched.status_code == 200
    assert fetched.json()["action"] == "exported"

    filtered = audit_client.get("/activity-logs", params={"entityType": "report", "action": "exported"}).json()
    assert [entry["entityId"] for entry in filtered] == [42]

    assert audit_client.get("/activity-logs", params={"id": 999}).status_code == 404


def test_activity_log_validation(audit_client: TestClient) -> None:
    cases = [
        ({"entityId": 1, "action": "x"}, "MISSING_ENTITY_TYPE"),
        ({"entityType": "report", "entityId": 1, "action": "  "}, "MISSING_ACTION"),
        ({"entityType": "report", "action": "x"}, "MISSING_ENTITY_ID"),
    ]
    for body, code in cases:
        response = audit_client.post("/activity-logs", json=body)
        assert response.status_code == 400, body
        assert response.json()["detail"]["code"] == code


def test_status_history_crud(audit_client: TestClient) -> None:
    sr_id = _create_service_request(audit_client)

    created = audit_client.post(
        "/status-history",
        json={"serviceRequestId": sr_id, "status": "replied", "notes": " Called client ", "changedBy": "Sales"},
    )
    assert created.status_code == 201
    entry = created.json()
    assert entry["notes"] == "Called client"

    listed = audit_client.get("/status-history", params={"serviceRequestId": sr_id}).json()
    assert [row["status"] for row in listed] == ["replied", "requested"]

    updated = audit_client.put("/status-history", params={"id": entry["id"]}, json={"notes": "Emailed client"})
    assert updated.status_code == 200
    assert updated.json()["notes"] == "Emailed client"
    assert updated.json()["status"] == "replied"

    deleted = audit_client.delete("/status-history", params={"id": entry["id"]})
    assert deleted.status_code == 200
    assert deleted.json()["deletedRecord"]["id"] == entry["id"]
    assert audit_client.get("/status-history", params={"id": entry["id"]}).status_code == 404


def test_status_history_validation(audit_client: TestClient) -> None:
    sr_id = _create_service_request(audit_client)
    cases = [
        ({"serviceRequestId": sr_id, "status": "  "}, "EMPTY_STATUS"),
        ({"serviceRequestId": sr_id, "status": "archived"}, "INVALID_STATUS"),
        ({"serviceRequestId": 999, "status": "replied"}, "SERVICE_REQUEST_NOT_FOUND"),
        ({"status": "replied"}, "MISSING_SERVICE_REQUEST_ID"),
    ]
    for body, code in cases:
        response = audit_client.post("/status-history", json=body)
        assert response.status_code == 400, body
        assert response.json()["detail"]["code"] == code

    with Session(db.engine) as session:
        rows = session.exec(select(models.StatusHistory)).all()
    assert [row.status for row in rows] == ["requested"]
