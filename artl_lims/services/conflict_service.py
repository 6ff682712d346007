from __future__ import annotations

from datetime import datetime

from sqlmodel import Session, col, select

from artl_lims.domain.errors import NotFoundError
from artl_lims.domain.models import (
    ConflictCheckRequest,
    ConflictCheckResult,
    ConflictingTask,
    Employee,
    ServiceRequest,
    TestBed,
    TestbedTask,
)
from artl_lims.domain.state_machine import ACTIVE_TASK_STATUSES
from artl_lims.infra.db import get_engine
from artl_lims.services.task_queue_service import validate_schedule_window


def summarize_conflicts(testbed_count: int, employee_count: int) -> str:
    if testbed_count and employee_count:
        return (
            f"Test bed has {testbed_count} conflicting task(s) and employee has "
            f"{employee_count} conflicting task(s) during this time period"
        )
    if testbed_count:
        return f"Test bed has {testbed_count} conflicting task(s) during this time period"
    if employee_count:
        return f"Employee has {employee_count} conflicting task(s) during this time period"
    return "No scheduling conflicts detected"


class ConflictService:
    """Read-only overlap checks; callers decide what to do with the result."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _overlapping(
        self,
        session: Session,
        *,
        start: datetime,
        end: datetime,
        testbed_id: int | None = None,
        employee_id: int | None = None,
        exclude_task_id: int | None = None,
    ) -> list[ConflictingTask]:
        # Half-open windows: touching boundaries do not overlap.
        statement = (
            select(TestbedTask, ServiceRequest.job_card_number)
            .join(ServiceRequest, col(ServiceRequest.id) == col(TestbedTask.service_request_id), isouter=True)
            .where(col(TestbedTask.status).in_([str(item) for item in ACTIVE_TASK_STATUSES]))
            .where(col(TestbedTask.scheduled_start_date).is_not(None))
            .where(col(TestbedTask.scheduled_end_date).is_not(None))
            .where(col(TestbedTask.scheduled_start_date) < end)
            .where(col(TestbedTask.scheduled_end_date) > start)
        )
        if testbed_id is not None:
            statement = statement.where(TestbedTask.testbed_id == testbed_id)
        if employee_id is not None:
            statement = statement.where(TestbedTask.assigned_employee_id == employee_id)
        if exclude_task_id is not None:
            statement = statement.where(TestbedTask.id != exclude_task_id)
        statement = statement.order_by(col(TestbedTask.scheduled_start_date).asc(), col(TestbedTask.id).asc())

        conflicts: list[ConflictingTask] = []
        for task, job_card in session.exec(statement).all():
            item = ConflictingTask.model_validate(task)
            item.job_card_number = job_card
            conflicts.append(item)
        return conflicts

    def check_conflicts(self, payload: ConflictCheckRequest) -> ConflictCheckResult:
        validate_schedule_window(payload.scheduled_start_date, payload.scheduled_end_date)
        with self._session() as session:
            if session.get(TestBed, payload.testbed_id) is None:
                raise NotFoundError("TESTBED_NOT_FOUND", "Test bed not found")
            if payload.employee_id is not None and session.get(Employee, payload.employee_id) is None:
                raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found")

            testbed_conflicts = self._overlapping(
                session,
                start=payload.scheduled_start_date,
                end=payload.scheduled_end_date,
                testbed_id=payload.testbed_id,
                exclude_task_id=payload.exclude_task_id,
            )
            employee_conflicts: list[ConflictingTask] = []
            if payload.employee_id is not None:
                employee_conflicts = self._overlapping(
                    session,
                    start=payload.scheduled_start_date,
                    end=payload.scheduled_end_date,
                    employee_id=payload.employee_id,
                    exclude_task_id=payload.exclude_task_id,
                )

        return ConflictCheckResult(
            conflicts=bool(testbed_conflicts or employee_conflicts),
            testbed_conflicts=testbed_conflicts,
            employee_conflicts=employee_conflicts,
            message=summarize_conflicts(len(testbed_conflicts), len(employee_conflicts)),
        )
