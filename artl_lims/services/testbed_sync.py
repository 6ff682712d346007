"""Test-bed occupancy synchronization.

A bed is ``in_use`` exactly while it hosts an in-progress task and
``available`` otherwise; ``maintenance`` is a manual override. The stored
status is only touched at the transition points that call into this module
(task start, complete, transfer and cancel, plus service-request status and
bed reassignment). Nothing re-derives it on read, so deleting an in-progress
task or editing a bed by hand can leave it stale until the next transition.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlmodel import Session, select

from artl_lims.domain.models import ServiceRequest, TestBed, TestbedTask
from artl_lims.domain.state_machine import ServiceRequestStatus, TaskStatus, TestbedStatus
from artl_lims.infra.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def lock_testbed(session: Session, testbed_id: int) -> TestBed | None:
    """Load a bed row with a write lock held until the transaction ends."""
    return session.exec(select(TestBed).where(TestBed.id == testbed_id).with_for_update()).first()


def in_progress_task(
    session: Session,
    testbed_id: int,
    *,
    exclude_task_id: int | None = None,
) -> TestbedTask | None:
    statement = (
        select(TestbedTask)
        .where(TestbedTask.testbed_id == testbed_id)
        .where(TestbedTask.status == TaskStatus.IN_PROGRESS)
    )
    if exclude_task_id is not None:
        statement = statement.where(TestbedTask.id != exclude_task_id)
    return session.exec(statement).first()


def _set_status(uow: UnitOfWork, bed: TestBed, target: TestbedStatus, *, at: datetime, reason: str) -> bool:
    if bed.status == target:
        return False
    previous = bed.status
    bed.status = target
    bed.updated_at = at
    uow.session.add(bed)
    uow.record_event(
        "test_bed.status_synced",
        {
            "testbed_id": bed.id,
            "from_status": str(previous),
            "to_status": str(target),
            "reason": reason,
        },
    )
    logger.info("test bed %s %s -> %s (%s)", bed.id, previous, target, reason)
    return True


def occupy_testbed(uow: UnitOfWork, bed: TestBed, *, at: datetime, reason: str) -> bool:
    return _set_status(uow, bed, TestbedStatus.IN_USE, at=at, reason=reason)


def release_testbed(uow: UnitOfWork, bed: TestBed, *, at: datetime, reason: str) -> bool:
    """Mark a bed available without looking for other work on it."""
    return _set_status(uow, bed, TestbedStatus.AVAILABLE, at=at, reason=reason)


def occupy_testbed_for_service_request(
    uow: UnitOfWork,
    testbed_id: int,
    *,
    at: datetime,
    reason: str,
) -> bool:
    bed = lock_testbed(uow.session, testbed_id)
    if bed is None or bed.status == TestbedStatus.MAINTENANCE:
        return False
    return occupy_testbed(uow, bed, at=at, reason=reason)


def release_testbed_if_idle(
    uow: UnitOfWork,
    testbed_id: int,
    *,
    at: datetime,
    reason: str,
    exclude_service_request_id: int | None = None,
) -> bool:
    """Release a bed unless another job is testing on it or a task is running there."""
    session = uow.session
    bed = lock_testbed(session, testbed_id)
    if bed is None or bed.status == TestbedStatus.MAINTENANCE:
        return False

    statement = (
        select(ServiceRequest.id)
        .where(ServiceRequest.assigned_testbed_id == testbed_id)
        .where(ServiceRequest.status == ServiceRequestStatus.TESTING)
    )
    if exclude_service_request_id is not None:
        statement = statement.where(ServiceRequest.id != exclude_service_request_id)
    if session.exec(statement).first() is not None:
        return False
    if in_progress_task(session, testbed_id) is not None:
        return False
    return release_testbed(uow, bed, at=at, reason=reason)
