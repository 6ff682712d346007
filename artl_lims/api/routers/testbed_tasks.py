from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from artl_lims.api.deps import Actor, raise_http_error
from artl_lims.domain.errors import LimsError
from artl_lims.domain.models import (
    ConflictCheckRequest,
    ConflictCheckResult,
    TaskDeleteResult,
    TaskTransferRequest,
    TaskTransferResult,
    TestbedTaskCreate,
    TestbedTaskRead,
    TestbedTaskTransferRead,
    TestbedTaskUpdate,
)
from artl_lims.domain.state_machine import TaskPriority, TaskStatus
from artl_lims.services.conflict_service import ConflictService
from artl_lims.services.task_queue_service import TaskQueueService, TaskWithJobCard

router = APIRouter()


def get_task_queue_service() -> TaskQueueService:
    return TaskQueueService()


def get_conflict_service() -> ConflictService:
    return ConflictService()


Service = Annotated[TaskQueueService, Depends(get_task_queue_service)]
Conflicts = Annotated[ConflictService, Depends(get_conflict_service)]


def task_read(row: TaskWithJobCard) -> TestbedTaskRead:
    task, job_card_number = row
    item = TestbedTaskRead.model_validate(task)
    item.job_card_number = job_card_number
    return item


@router.get("", response_model=TestbedTaskRead | list[TestbedTaskRead])
def list_tasks(
    service: Service,
    id: int | None = None,
    testbed_id: Annotated[int | None, Query(alias="testbedId")] = None,
    service_request_id: Annotated[int | None, Query(alias="serviceRequestId")] = None,
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    limit: int = 10,
    offset: int = 0,
) -> TestbedTaskRead | list[TestbedTaskRead]:
    try:
        if id is not None:
            return task_read(service.get_task(id))
        rows = service.list_tasks(
            testbed_id=testbed_id,
            service_request_id=service_request_id,
            status=status,
            priority=priority,
            limit=limit,
            offset=offset,
        )
        return [task_read(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@router.post("", response_model=TestbedTaskRead, status_code=status.HTTP_201_CREATED)
def create_task(payload: TestbedTaskCreate, actor: Actor, service: Service) -> TestbedTaskRead:
    try:
        return task_read(service.create_task(payload, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.put("", response_model=TestbedTaskRead)
def update_task(id: int, payload: TestbedTaskUpdate, actor: Actor, service: Service) -> TestbedTaskRead:
    try:
        return task_read(service.update_task(id, payload, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.delete("", response_model=TaskDeleteResult)
def delete_task(id: int, actor: Actor, service: Service) -> TaskDeleteResult:
    try:
        row = service.delete_task(id, actor=actor)
        return TaskDeleteResult(message="Task deleted successfully", task=task_read(row))
    except LimsError as exc:
        raise_http_error(exc)


@router.post("/check-conflicts", response_model=ConflictCheckResult)
def check_conflicts(payload: ConflictCheckRequest, conflicts: Conflicts) -> ConflictCheckResult:
    try:
        return conflicts.check_conflicts(payload)
    except LimsError as exc:
        raise_http_error(exc)


@router.post("/{task_id}/start", response_model=TestbedTaskRead)
def start_task(task_id: int, actor: Actor, service: Service) -> TestbedTaskRead:
    try:
        return task_read(service.start_task(task_id, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.post("/{task_id}/complete", response_model=TestbedTaskRead)
def complete_task(task_id: int, actor: Actor, service: Service) -> TestbedTaskRead:
    try:
        return task_read(service.complete_task(task_id, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.post("/{task_id}/transfer", response_model=TaskTransferResult)
def transfer_task(
    task_id: int,
    payload: TaskTransferRequest,
    actor: Actor,
    service: Service,
) -> TaskTransferResult:
    try:
        task, job_card_number, transfer = service.transfer_task(task_id, payload, actor=actor)
        return TaskTransferResult(
            **task_read((task, job_card_number)).model_dump(),
            transfer_details=TestbedTaskTransferRead.model_validate(transfer),
        )
    except LimsError as exc:
        raise_http_error(exc)
