from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from artl_lims.api.deps import Actor, raise_http_error
from artl_lims.domain.errors import LimsError
from artl_lims.domain.models import (
    DeleteResult,
    ServiceRequestCreate,
    ServiceRequestRead,
    ServiceRequestStatusChange,
    ServiceRequestUpdate,
    StatusHistoryRead,
)
from artl_lims.domain.state_machine import ServiceRequestStatus
from artl_lims.services.service_request_service import ServiceRequestService

router = APIRouter()


def get_service_request_service() -> ServiceRequestService:
    return ServiceRequestService()


Service = Annotated[ServiceRequestService, Depends(get_service_request_service)]


@router.get("", response_model=ServiceRequestRead | list[ServiceRequestRead])
def list_service_requests(
    service: Service,
    id: int | None = None,
    search: str | None = None,
    status: ServiceRequestStatus | None = None,
    company_id: Annotated[int | None, Query(alias="companyId")] = None,
    limit: int = 10,
    offset: int = 0,
) -> ServiceRequestRead | list[ServiceRequestRead]:
    try:
        if id is not None:
            return ServiceRequestRead.model_validate(service.get_service_request(id))
        rows = service.list_service_requests(
            search=search,
            status=status,
            company_id=company_id,
            limit=limit,
            offset=offset,
        )
        return [ServiceRequestRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@router.post("", response_model=ServiceRequestRead, status_code=status.HTTP_201_CREATED)
def create_service_request(payload: ServiceRequestCreate, actor: Actor, service: Service) -> ServiceRequestRead:
    try:
        return ServiceRequestRead.model_validate(service.create_service_request(payload, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.put("", response_model=ServiceRequestRead)
def update_service_request(
    id: int,
    payload: ServiceRequestUpdate,
    actor: Actor,
    service: Service,
) -> ServiceRequestRead:
    try:
        return ServiceRequestRead.model_validate(service.update_service_request(id, payload, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.delete("", response_model=DeleteResult[ServiceRequestRead])
def delete_service_request(id: int, actor: Actor, service: Service) -> DeleteResult[ServiceRequestRead]:
    try:
        row = service.delete_service_request(id, actor=actor)
        return DeleteResult[ServiceRequestRead](
            message="Service request deleted successfully",
            deleted_record=ServiceRequestRead.model_validate(row),
        )
    except LimsError as exc:
        raise_http_error(exc)


@router.post("/{service_request_id}/status", response_model=ServiceRequestRead)
def change_status(
    service_request_id: int,
    payload: ServiceRequestStatusChange,
    actor: Actor,
    service: Service,
) -> ServiceRequestRead:
    try:
        return ServiceRequestRead.model_validate(service.change_status(service_request_id, payload, actor=actor))
    except LimsError as exc:
        raise_http_error(exc)


@router.get("/{service_request_id}/history", response_model=list[StatusHistoryRead])
def list_history(service_request_id: int, service: Service) -> list[StatusHistoryRead]:
    try:
        return [StatusHistoryRead.model_validate(row) for row in service.list_history(service_request_id)]
    except LimsError as exc:
        raise_http_error(exc)
