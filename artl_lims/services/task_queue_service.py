from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from artl_lims.domain.actors import SYSTEM_ACTOR, optional_actor, resolve_actor
from artl_lims.domain.errors import ConflictError, NotFoundError, ValidationError
from artl_lims.domain.models import (
    Employee,
    ServiceRequest,
    TaskTransferRequest,
    TestBed,
    TestbedTask,
    TestbedTaskCreate,
    TestbedTaskTransfer,
    TestbedTaskUpdate,
)
from artl_lims.domain.state_machine import (
    ACTIVE_TASK_STATUSES,
    PRIORITY_RANK,
    TaskPriority,
    TaskStatus,
    can_admin_set_task_status,
    can_task_transition,
)
from artl_lims.infra.audit import append_activity, field_changes
from artl_lims.infra.clock import Clock, as_utc, system_clock
from artl_lims.infra.db import get_engine
from artl_lims.infra.unit_of_work import UnitOfWork
from artl_lims.services.pagination import clamp_limit, clamp_offset
from artl_lims.services.testbed_sync import in_progress_task, lock_testbed, occupy_testbed, release_testbed

logger = logging.getLogger(__name__)

TASK_ENTITY = "testbed_task"
MAX_LOCK_ATTEMPTS = 3

TaskWithJobCard = tuple[TestbedTask, str | None]


def validate_schedule_window(start: datetime | None, end: datetime | None) -> None:
    if start is not None and end is not None and as_utc(end) <= as_utc(start):
        raise ValidationError("INVALID_DATE_RANGE", "scheduledEndDate must be after scheduledStartDate")


def priority_rank_expression() -> Any:
    return case(
        {str(priority): rank for priority, rank in PRIORITY_RANK.items()},
        value=col(TestbedTask.priority),
        else_=len(PRIORITY_RANK) + 1,
    )


class TaskQueueService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_task(self, session: Session, task_id: int) -> TestbedTask:
        task = session.get(TestbedTask, task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        return task

    def _lock_task_beds(
        self,
        session: Session,
        task: TestbedTask,
        *other_bed_ids: int,
    ) -> dict[int, TestBed | None]:
        """Lock the task's bed and ``other_bed_ids`` in id order, then re-read the task.

        If the task moved to a bed outside the locked set while we waited, the
        locks are taken again against its new bed. The returned mapping always
        holds ``task.testbed_id``.
        """
        for _ in range(MAX_LOCK_ATTEMPTS):
            locked_from = task.testbed_id
            beds = {bed_id: lock_testbed(session, bed_id) for bed_id in sorted({locked_from, *other_bed_ids})}
            session.refresh(task)
            if task.testbed_id in beds:
                return beds
            logger.info(
                "task %s moved from test bed %s to %s while waiting for the lock",
                task.id,
                locked_from,
                task.testbed_id,
            )
        raise ConflictError(
            "TASK_MOVED",
            "Task was moved to another test bed while it was being changed",
            {"currentTestbedId": task.testbed_id},
        )

    def _job_card_numbers(self, session: Session, service_request_ids: Iterable[int]) -> dict[int, str]:
        ids = set(service_request_ids)
        if not ids:
            return {}
        rows = session.exec(
            select(ServiceRequest.id, ServiceRequest.job_card_number).where(col(ServiceRequest.id).in_(ids))
        ).all()
        return {row_id: job_card for row_id, job_card in rows if row_id is not None}

    def _with_job_card(self, session: Session, task: TestbedTask) -> TaskWithJobCard:
        return task, self._job_card_numbers(session, [task.service_request_id]).get(task.service_request_id)

    def _count_queued(self, session: Session, testbed_id: int) -> int:
        return session.exec(
            select(func.count())
            .select_from(TestbedTask)
            .where(TestbedTask.testbed_id == testbed_id)
            .where(TestbedTask.status == TaskStatus.QUEUED)
        ).one()

    def _stamp_service_request(
        self,
        session: Session,
        service_request_id: int,
        attribute: str,
        at: datetime,
    ) -> None:
        service_request = session.get(ServiceRequest, service_request_id)
        if service_request is None or getattr(service_request, attribute) is not None:
            return
        setattr(service_request, attribute, at)
        service_request.updated_at = at
        session.add(service_request)

    def create_task(self, payload: TestbedTaskCreate, actor: str = SYSTEM_ACTOR) -> TaskWithJobCard:
        with UnitOfWork() as uow:
            session = uow.session
            service_request = session.get(ServiceRequest, payload.service_request_id)
            if service_request is None:
                raise ValidationError("INVALID_SERVICE_REQUEST_ID", "Service request not found")
            # Locking the bed keeps concurrent creates from computing the same position.
            bed = lock_testbed(session, payload.testbed_id)
            if bed is None:
                raise ValidationError("INVALID_TESTBED_ID", "Test bed not found")
            if payload.assigned_employee_id is not None and session.get(Employee, payload.assigned_employee_id) is None:
                raise ValidationError("INVALID_EMPLOYEE_ID", "Employee not found")
            validate_schedule_window(payload.scheduled_start_date, payload.scheduled_end_date)

            now = self._clock()
            position = self._count_queued(session, payload.testbed_id) + 1
            task = TestbedTask(
                service_request_id=payload.service_request_id,
                testbed_id=payload.testbed_id,
                assigned_employee_id=payload.assigned_employee_id,
                status=TaskStatus.QUEUED,
                priority=payload.priority,
                scheduled_start_date=payload.scheduled_start_date,
                scheduled_end_date=payload.scheduled_end_date,
                queue_position=position,
                notes=payload.notes,
                created_at=now,
                updated_at=now,
            )
            session.add(task)
            uow.flush()
            append_activity(
                session,
                entity_type=TASK_ENTITY,
                entity_id=task.id,
                action="created",
                at=now,
                performed_by=actor,
                new_value=TaskStatus.QUEUED,
                metadata={
                    "testbedId": task.testbed_id,
                    "queuePosition": position,
                    "jobCardNumber": service_request.job_card_number,
                },
            )
            uow.record_event(
                "testbed_task.created",
                {"task_id": task.id, "testbed_id": task.testbed_id, "queue_position": position},
                actor_id=actor,
            )
            uow.commit()

        logger.info("task %s queued on test bed %s at position %s", task.id, task.testbed_id, position)
        return task, service_request.job_card_number

    def get_task(self, task_id: int) -> TaskWithJobCard:
        with self._session() as session:
            return self._with_job_card(session, self._get_task(session, task_id))

    def list_tasks(
        self,
        *,
        testbed_id: int | None = None,
        service_request_id: int | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[TaskWithJobCard]:
        with self._session() as session:
            statement = select(TestbedTask, ServiceRequest.job_card_number).join(
                ServiceRequest,
                col(ServiceRequest.id) == col(TestbedTask.service_request_id),
                isouter=True,
            )
            if testbed_id is not None:
                statement = statement.where(TestbedTask.testbed_id == testbed_id)
            if service_request_id is not None:
                statement = statement.where(TestbedTask.service_request_id == service_request_id)
            if status is not None:
                statement = statement.where(TestbedTask.status == status)
            if priority is not None:
                statement = statement.where(TestbedTask.priority == priority)
            statement = (
                statement.order_by(col(TestbedTask.queue_position).asc(), col(TestbedTask.created_at).desc())
                .offset(clamp_offset(offset))
                .limit(clamp_limit(limit))
            )
            return [(task, job_card) for task, job_card in session.exec(statement).all()]

    def update_task(self, task_id: int, payload: TestbedTaskUpdate, actor: str = SYSTEM_ACTOR) -> TaskWithJobCard:
        changes = payload.model_dump(exclude_unset=True)
        target_status = changes.pop("status", None)
        for field in ("priority", "queue_position"):
            if field in changes and changes[field] is None:
                changes.pop(field)

        with UnitOfWork() as uow:
            session = uow.session
            task = self._get_task(session, task_id)
            beds = self._lock_task_beds(session, task) if target_status is not None else {}
            employee_id = changes.get("assigned_employee_id")
            if employee_id is not None and session.get(Employee, employee_id) is None:
                raise ValidationError("INVALID_EMPLOYEE_ID", "Employee not found")
            validate_schedule_window(
                changes.get("scheduled_start_date", task.scheduled_start_date),
                changes.get("scheduled_end_date", task.scheduled_end_date),
            )
            previous_status = TaskStatus(task.status)
            status_changed = target_status is not None and target_status != previous_status
            if status_changed and not can_admin_set_task_status(previous_status, target_status):
                raise ConflictError(
                    "INVALID_STATUS_TRANSITION",
                    f"Cannot change task status from '{previous_status}' to '{target_status}'",
                    {"currentStatus": str(previous_status), "requestedStatus": str(target_status)},
                )

            now = self._clock()
            before = {field: getattr(task, field) for field in changes}
            for field, value in changes.items():
                setattr(task, field, value)
            if status_changed:
                task.status = target_status
                if previous_status == TaskStatus.IN_PROGRESS:
                    bed = beds[task.testbed_id]
                    if bed is not None:
                        release_testbed(uow, bed, at=now, reason=f"task {task.id} {target_status}")
            task.updated_at = now
            session.add(task)

            for field, old_value, new_value in field_changes(before, changes):
                append_activity(
                    session,
                    entity_type=TASK_ENTITY,
                    entity_id=task_id,
                    action="updated",
                    at=now,
                    performed_by=actor,
                    field_name=to_camel(field),
                    old_value=old_value,
                    new_value=new_value,
                )
            if status_changed:
                append_activity(
                    session,
                    entity_type=TASK_ENTITY,
                    entity_id=task_id,
                    action=str(target_status),
                    at=now,
                    performed_by=actor,
                    field_name="status",
                    old_value=previous_status,
                    new_value=target_status,
                )
                uow.record_event(
                    f"testbed_task.{target_status}",
                    {"task_id": task_id, "testbed_id": task.testbed_id, "from_status": str(previous_status)},
                    actor_id=actor,
                )
            uow.commit()
            return self._with_job_card(session, task)

    def delete_task(self, task_id: int, actor: str = SYSTEM_ACTOR) -> TaskWithJobCard:
        with UnitOfWork() as uow:
            session = uow.session
            task, job_card = self._with_job_card(session, self._get_task(session, task_id))
            if task.status == TaskStatus.IN_PROGRESS:
                logger.warning(
                    "deleting in-progress task %s; test bed %s keeps its stored status",
                    task.id,
                    task.testbed_id,
                )
            session.delete(task)
            append_activity(
                session,
                entity_type=TASK_ENTITY,
                entity_id=task_id,
                action="deleted",
                at=self._clock(),
                performed_by=actor,
                old_value=task.status,
                metadata={"testbedId": task.testbed_id, "jobCardNumber": job_card},
            )
            uow.record_event(
                "testbed_task.deleted",
                {"task_id": task_id, "testbed_id": task.testbed_id, "status": str(task.status)},
                actor_id=actor,
            )
            uow.commit()
        return task, job_card

    def start_task(self, task_id: int, actor: str = SYSTEM_ACTOR) -> TaskWithJobCard:
        with UnitOfWork() as uow:
            session = uow.session
            task = self._get_task(session, task_id)
            # Re-read under the bed lock so a start or transfer that committed meanwhile is visible.
            bed = self._lock_task_beds(session, task)[task.testbed_id]
            if task.status != TaskStatus.QUEUED:
                raise ConflictError(
                    "INVALID_TASK_STATUS",
                    f"Cannot start task with status '{task.status}'. Only tasks with status 'queued' can be started.",
                    {"currentStatus": str(task.status)},
                )
            if bed is None:
                raise NotFoundError("TESTBED_NOT_FOUND", "Test bed not found")
            running = in_progress_task(session, bed.id, exclude_task_id=task.id)
            if running is not None:
                raise ConflictError(
                    "TESTBED_IN_USE",
                    "Test bed already has a task in progress",
                    {"currentTaskId": running.id},
                )

            now = self._clock()
            task.status = TaskStatus.IN_PROGRESS
            task.actual_start_date = now
            task.updated_at = now
            session.add(task)
            occupy_testbed(uow, bed, at=now, reason=f"task {task.id} started")
            self._stamp_service_request(session, task.service_request_id, "testing_start_date", now)
            append_activity(
                session,
                entity_type=TASK_ENTITY,
                entity_id=task_id,
                action="started",
                at=now,
                performed_by=actor,
                field_name="status",
                old_value=TaskStatus.QUEUED,
                new_value=TaskStatus.IN_PROGRESS,
            )
            uow.record_event(
                "testbed_task.started",
                {"task_id": task_id, "testbed_id": task.testbed_id},
                actor_id=actor,
            )
            try:
                uow.commit()
            except IntegrityError as exc:
                raise ConflictError("TESTBED_IN_USE", "Test bed already has a task in progress") from exc
            result = self._with_job_card(session, task)

        logger.info("task %s started on test bed %s", task_id, task.testbed_id)
        return result

    def complete_task(self, task_id: int, actor: str = SYSTEM_ACTOR) -> TaskWithJobCard:
        with UnitOfWork() as uow:
            session = uow.session
            task = self._get_task(session, task_id)
            bed = self._lock_task_beds(session, task)[task.testbed_id]
            if task.status != TaskStatus.IN_PROGRESS:
                raise ConflictError(
                    "INVALID_STATUS",
                    f"Cannot complete task. Task status is '{task.status}', but must be 'in_progress' to complete",
                    {"currentStatus": str(task.status)},
                )
            if task.actual_start_date is None:
                raise ConflictError(
                    "TASK_NOT_STARTED",
                    "Cannot complete task. Task must have been started (actualStartDate is required)",
                )

            now = self._clock()
            task.status = TaskStatus.COMPLETED
            task.actual_end_date = now
            task.updated_at = now
            session.add(task)
            if bed is not None:
                release_testbed(uow, bed, at=now, reason=f"task {task.id} completed")
            self._stamp_service_request(session, task.service_request_id, "testing_end_date", now)
            append_activity(
                session,
                entity_type=TASK_ENTITY,
                entity_id=task_id,
                action="completed",
                at=now,
                performed_by=actor,
                field_name="status",
                old_value=TaskStatus.IN_PROGRESS,
                new_value=TaskStatus.COMPLETED,
            )
            uow.record_event(
                "testbed_task.completed",
                {"task_id": task_id, "testbed_id": task.testbed_id},
                actor_id=actor,
            )
            uow.commit()
            result = self._with_job_card(session, task)

        logger.info("task %s completed on test bed %s", task_id, task.testbed_id)
        return result

    def transfer_task(
        self,
        task_id: int,
        payload: TaskTransferRequest,
        actor: str = SYSTEM_ACTOR,
    ) -> tuple[TestbedTask, str | None, TestbedTaskTransfer]:
        reason = payload.reason.strip()
        if not reason:
            raise ValidationError("MISSING_REASON", "Transfer reason is required")
        transferred_by = optional_actor(payload.transferred_by)
        notes = payload.notes.strip() if payload.notes and payload.notes.strip() else None

        with UnitOfWork() as uow:
            session = uow.session
            task = self._get_task(session, task_id)
            if task.status not in ACTIVE_TASK_STATUSES:
                raise ConflictError(
                    "INVALID_TASK_STATUS",
                    f"Cannot transfer task with status: {task.status}",
                    {"currentStatus": str(task.status)},
                )
            # Both beds are locked in id order so opposite transfers cannot deadlock.
            beds = self._lock_task_beds(session, task, payload.to_testbed_id)
            if beds[payload.to_testbed_id] is None:
                raise NotFoundError("TO_TESTBED_NOT_FOUND", "Target testbed not found")
            if payload.to_testbed_id == task.testbed_id:
                raise ConflictError("SAME_TESTBED_TRANSFER", "Cannot transfer task to the same testbed")
            if not can_task_transition(TaskStatus(task.status), TaskStatus.QUEUED):
                raise ConflictError(
                    "INVALID_TASK_STATUS",
                    f"Cannot transfer task with status: {task.status}",
                    {"currentStatus": str(task.status)},
                )

            now = self._clock()
            from_testbed_id = task.testbed_id
            was_in_progress = task.status == TaskStatus.IN_PROGRESS
            position = self._count_queued(session, payload.to_testbed_id) + 1
            task.testbed_id = payload.to_testbed_id
            task.status = TaskStatus.QUEUED
            task.queue_position = position
            task.actual_start_date = None
            task.updated_at = now
            session.add(task)

            origin = beds[from_testbed_id]
            if was_in_progress and origin is not None:
                release_testbed(uow, origin, at=now, reason=f"task {task.id} transferred out")

            transfer = TestbedTaskTransfer(
                task_id=task_id,
                from_testbed_id=from_testbed_id,
                to_testbed_id=payload.to_testbed_id,
                reason=reason,
                transferred_by=transferred_by,
                transferred_at=now,
                notes=notes,
            )
            session.add(transfer)
            append_activity(
                session,
                entity_type=TASK_ENTITY,
                entity_id=task_id,
                action="transferred",
                at=now,
                performed_by=resolve_actor(transferred_by, actor),
                field_name="testbedId",
                old_value=from_testbed_id,
                new_value=payload.to_testbed_id,
                reason=reason,
                metadata={"wasInProgress": was_in_progress, "queuePosition": position},
            )
            uow.record_event(
                "testbed_task.transferred",
                {
                    "task_id": task_id,
                    "from_testbed_id": from_testbed_id,
                    "to_testbed_id": payload.to_testbed_id,
                    "was_in_progress": was_in_progress,
                },
                actor_id=actor,
            )
            uow.commit()
            _, job_card = self._with_job_card(session, task)

        logger.info(
            "task %s transferred from test bed %s to %s (position %s)",
            task_id,
            from_testbed_id,
            payload.to_testbed_id,
            position,
        )
        return task, job_card, transfer

    def queue(self, testbed_id: int) -> list[TaskWithJobCard]:
        with self._session() as session:
            if session.get(TestBed, testbed_id) is None:
                raise NotFoundError("TESTBED_NOT_FOUND", "Test bed not found")
            statement = (
                select(TestbedTask, ServiceRequest.job_card_number)
                .join(ServiceRequest, col(ServiceRequest.id) == col(TestbedTask.service_request_id), isouter=True)
                .where(TestbedTask.testbed_id == testbed_id)
                .where(TestbedTask.status == TaskStatus.QUEUED)
                .order_by(
                    col(TestbedTask.queue_position).asc(),
                    priority_rank_expression(),
                    col(TestbedTask.created_at).asc(),
                )
            )
            return [(task, job_card) for task, job_card in session.exec(statement).all()]

    def current_task(self, testbed_id: int) -> TaskWithJobCard:
        with self._session() as session:
            if session.get(TestBed, testbed_id) is None:
                raise NotFoundError("TEST_BED_NOT_FOUND", "Test bed not found")
            task = in_progress_task(session, testbed_id)
            if task is None:
                raise NotFoundError("NO_TASK_IN_PROGRESS", "No task currently in progress for this test bed")
            return self._with_job_card(session, task)

    def get_transfer(self, transfer_id: int) -> TestbedTaskTransfer:
        with self._session() as session:
            transfer = session.get(TestbedTaskTransfer, transfer_id)
            if transfer is None:
                raise NotFoundError("NOT_FOUND", "Transfer record not found")
            return transfer

    def list_transfers(
        self,
        *,
        task_id: int | None = None,
        from_testbed_id: int | None = None,
        to_testbed_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[TestbedTaskTransfer]:
        with self._session() as session:
            statement = select(TestbedTaskTransfer)
            if task_id is not None:
                statement = statement.where(TestbedTaskTransfer.task_id == task_id)
            if from_testbed_id is not None:
                statement = statement.where(TestbedTaskTransfer.from_testbed_id == from_testbed_id)
            if to_testbed_id is not None:
                statement = statement.where(TestbedTaskTransfer.to_testbed_id == to_testbed_id)
            statement = (
                statement.order_by(col(TestbedTaskTransfer.transferred_at).desc(), col(TestbedTaskTransfer.id).desc())
                .offset(clamp_offset(offset))
                .limit(clamp_limit(limit))
            )
            return list(session.exec(statement).all())
