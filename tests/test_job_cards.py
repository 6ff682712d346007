from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, date, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from artl_lims import main as app_main
from artl_lims.api.routers import job_cards
from artl_lims.domain.models import Company, ServiceRequest
from artl_lims.infra import db, events
from artl_lims.infra.clock import FrozenClock
from artl_lims.services.job_card_service import (
    JobCardService,
    format_job_card_number,
    next_sequence,
    parse_sequence,
)

TODAY = datetime(2026, 10, 19, 9, 30, tzinfo=UTC)


@pytest.fixture()
def job_card_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[tuple[TestClient, object], None, None]:
    db_path = tmp_path / "job_card_test.db"
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
    clock = FrozenClock(TODAY)
    app_main.app.dependency_overrides[job_cards.get_job_card_service] = lambda: JobCardService(clock=clock)
    client = TestClient(app_main.app)
    yield client, test_engine
    client.close()
    app_main.app.dependency_overrides.clear()


def _seed_job_cards(engine: object, numbers: list[str]) -> None:
    with Session(engine) as session:  # type: ignore[arg-type]
        company = Company(name="Acme Relays")
        session.add(company)
        session.flush()
        for number in numbers:
            session.add(ServiceRequest(job_card_number=number, company_id=company.id, product_name="Relay"))
        session.commit()


def test_format_and_parse() -> None:
    number = format_job_card_number(date(2026, 10, 19), 4)
    assert number == "ARTL-RF-261019-04-01-01"
    assert parse_sequence(number) == 4
    assert parse_sequence("ARTL-RF-261019") is None
    assert parse_sequence("ARTL-RF-261019-XX-01-01") is None


def test_next_sequence_skips_gaps_and_ignores_malformed() -> None:
    assert next_sequence([]) == 1
    assert next_sequence(["ARTL-RF-261019-01-01-01", "ARTL-RF-261019-03-01-01"]) == 4
    assert next_sequence(["ARTL-RF-261019-bad"]) == 1


def test_first_number_of_the_day(job_card_client: tuple[TestClient, object]) -> None:
    client, _ = job_card_client
    response = client.get("/job-card-next")
    assert response.status_code == 200
    assert response.json() == {
        "nextJobCardNumber": "ARTL-RF-261019-01-01-01",
        "date": "261019",
        "sequenceNumber": 1,
    }


def test_next_number_follows_highest_sequence_of_today(job_card_client: tuple[TestClient, object]) -> None:
    client, engine = job_card_client
    _seed_job_cards(
        engine,
        [
            "ARTL-RF-261019-01-01-01",
            "ARTL-RF-261019-03-01-01",
            "ARTL-RF-261018-07-01-01",
        ],
    )
    response = client.get("/job-card-next")
    assert response.status_code == 200
    body = response.json()
    assert body["nextJobCardNumber"] == "ARTL-RF-261019-04-01-01"
    assert body["sequenceNumber"] == 4


def test_daily_limit(job_card_client: tuple[TestClient, object]) -> None:
    client, engine = job_card_client
    _seed_job_cards(engine, ["ARTL-RF-261019-99-01-01"])
    response = client.get("/job-card-next")
    assert response.status_code == 400
    assert response.json()["detail"] == {
        "code": "MAX_DAILY_LIMIT_REACHED",
        "message": "Maximum job cards per day (99) exceeded",
    }
