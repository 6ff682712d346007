"""Job-card numbering: ``ARTL-RF-YYMMDD-SS-01-01``.

``SS`` is a two-digit daily sequence starting at 01. The next number is one
past the highest sequence already issued today, so gaps left by deleted
cards are never reused.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from sqlmodel import Session, col, select

from artl_lims.domain.errors import ValidationError
from artl_lims.domain.models import JobCardNumberRead, ServiceRequest
from artl_lims.infra.clock import Clock, system_clock
from artl_lims.infra.db import get_engine

logger = logging.getLogger(__name__)

JOB_CARD_PREFIX = "ARTL-RF"
JOB_CARD_SUFFIX = "-01-01"
MAX_DAILY_SEQUENCE = 99


def date_stamp(day: date) -> str:
    return day.strftime("%y%m%d")


def daily_prefix(day: date) -> str:
    return f"{JOB_CARD_PREFIX}-{date_stamp(day)}-"


def format_job_card_number(day: date, sequence: int) -> str:
    return f"{daily_prefix(day)}{sequence:02d}{JOB_CARD_SUFFIX}"


def parse_sequence(job_card_number: str) -> int | None:
    parts = job_card_number.split("-")
    if len(parts) < 4 or not parts[3].isdigit():
        return None
    return int(parts[3])


def next_sequence(existing: Iterable[str]) -> int:
    sequences = [seq for seq in (parse_sequence(number) for number in existing) if seq is not None]
    return max(sequences, default=0) + 1


class JobCardService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def next_job_card_number(self) -> JobCardNumberRead:
        today = self._clock().date()
        prefix = daily_prefix(today)
        with self._session() as session:
            existing = session.exec(
                select(ServiceRequest.job_card_number).where(col(ServiceRequest.job_card_number).startswith(prefix))
            ).all()

        sequence = next_sequence(existing)
        if sequence > MAX_DAILY_SEQUENCE:
            logger.warning("daily job card limit reached for %s", date_stamp(today))
            raise ValidationError(
                "MAX_DAILY_LIMIT_REACHED",
                f"Maximum job cards per day ({MAX_DAILY_SEQUENCE}) exceeded",
            )
        return JobCardNumberRead(
            next_job_card_number=format_job_card_number(today, sequence),
            date=date_stamp(today),
            sequence_number=sequence,
        )
