from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from artl_lims.api.deps import raise_http_error
from artl_lims.domain.errors import LimsError
from artl_lims.domain.models import (
    ActivityLogCreate,
    ActivityLogRead,
    DeleteResult,
    StatusHistoryCreate,
    StatusHistoryRead,
    StatusHistoryUpdate,
)
from artl_lims.services.audit_trail_service import ActivityLogService, StatusHistoryService

activity_router = APIRouter()
history_router = APIRouter()


def get_activity_log_service() -> ActivityLogService:
    return ActivityLogService()


def get_status_history_service() -> StatusHistoryService:
    return StatusHistoryService()


Activity = Annotated[ActivityLogService, Depends(get_activity_log_service)]
History = Annotated[StatusHistoryService, Depends(get_status_history_service)]


@activity_router.get("", response_model=ActivityLogRead | list[ActivityLogRead])
def list_activity_logs(
    service: Activity,
    id: int | None = None,
    entity_type: Annotated[str | None, Query(alias="entityType")] = None,
    entity_id: Annotated[int | None, Query(alias="entityId")] = None,
    action: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> ActivityLogRead | list[ActivityLogRead]:
    try:
        if id is not None:
            return ActivityLogRead.model_validate(service.get_entry(id))
        rows = service.list_entries(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            limit=limit,
            offset=offset,
        )
        return [ActivityLogRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@activity_router.post("", response_model=ActivityLogRead, status_code=status.HTTP_201_CREATED)
def create_activity_log(payload: ActivityLogCreate, service: Activity) -> ActivityLogRead:
    try:
        return ActivityLogRead.model_validate(service.record_entry(payload))
    except LimsError as exc:
        raise_http_error(exc)


@history_router.get("", response_model=StatusHistoryRead | list[StatusHistoryRead])
def list_status_history(
    service: History,
    id: int | None = None,
    service_request_id: Annotated[int | None, Query(alias="serviceRequestId")] = None,
    limit: int = 10,
    offset: int = 0,
) -> StatusHistoryRead | list[StatusHistoryRead]:
    try:
        if id is not None:
            return StatusHistoryRead.model_validate(service.get_entry(id))
        rows = service.list_entries(service_request_id=service_request_id, limit=limit, offset=offset)
        return [StatusHistoryRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@history_router.post("", response_model=StatusHistoryRead, status_code=status.HTTP_201_CREATED)
def create_status_history(payload: StatusHistoryCreate, service: History) -> StatusHistoryRead:
    try:
        return StatusHistoryRead.model_validate(service.create_entry(payload))
    except LimsError as exc:
        raise_http_error(exc)


@history_router.put("", response_model=StatusHistoryRead)
def update_status_history(id: int, payload: StatusHistoryUpdate, service: History) -> StatusHistoryRead:
    try:
        return StatusHistoryRead.model_validate(service.update_entry(id, payload))
    except LimsError as exc:
        raise_http_error(exc)


@history_router.delete("", response_model=DeleteResult[StatusHistoryRead])
def delete_status_history(id: int, service: History) -> DeleteResult[StatusHistoryRead]:
    try:
        row = service.delete_entry(id)
        return DeleteResult[StatusHistoryRead](
            message="Status history record deleted successfully",
            deleted_record=StatusHistoryRead.model_validate(row),
        )
    except LimsError as exc:
        raise_http_error(exc)
