from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from artl_lims.api.deps import raise_http_error
from artl_lims.domain.errors import LimsError
from artl_lims.domain.models import (
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactPersonCreate,
    ContactPersonRead,
    ContactPersonUpdate,
    DeleteResult,
    EmployeeCreate,
    EmployeeRead,
    EmployeeUpdate,
)
from artl_lims.services.directory_service import DirectoryService

companies_router = APIRouter()
contacts_router = APIRouter()
employees_router = APIRouter()


def get_directory_service() -> DirectoryService:
    return DirectoryService()


Service = Annotated[DirectoryService, Depends(get_directory_service)]


@companies_router.get("", response_model=CompanyRead | list[CompanyRead])
def list_companies(
    service: Service,
    id: int | None = None,
    search: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> CompanyRead | list[CompanyRead]:
    try:
        if id is not None:
            return CompanyRead.model_validate(service.get_company(id))
        rows = service.list_companies(search=search, limit=limit, offset=offset)
        return [CompanyRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@companies_router.post("", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(payload: CompanyCreate, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.create_company(payload))
    except LimsError as exc:
        raise_http_error(exc)


@companies_router.put("", response_model=CompanyRead)
def update_company(id: int, payload: CompanyUpdate, service: Service) -> CompanyRead:
    try:
        return CompanyRead.model_validate(service.update_company(id, payload))
    except LimsError as exc:
        raise_http_error(exc)


@companies_router.delete("", response_model=DeleteResult[CompanyRead])
def delete_company(id: int, service: Service) -> DeleteResult[CompanyRead]:
    try:
        row = service.delete_company(id)
        return DeleteResult[CompanyRead](
            message="Company deleted successfully",
            deleted_record=CompanyRead.model_validate(row),
        )
    except LimsError as exc:
        raise_http_error(exc)


@contacts_router.get("", response_model=ContactPersonRead | list[ContactPersonRead])
def list_contact_persons(
    service: Service,
    id: int | None = None,
    company_id: Annotated[int | None, Query(alias="companyId")] = None,
    search: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> ContactPersonRead | list[ContactPersonRead]:
    try:
        if id is not None:
            return ContactPersonRead.model_validate(service.get_contact_person(id))
        rows = service.list_contact_persons(company_id=company_id, search=search, limit=limit, offset=offset)
        return [ContactPersonRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@contacts_router.post("", response_model=ContactPersonRead, status_code=status.HTTP_201_CREATED)
def create_contact_person(payload: ContactPersonCreate, service: Service) -> ContactPersonRead:
    try:
        return ContactPersonRead.model_validate(service.create_contact_person(payload))
    except LimsError as exc:
        raise_http_error(exc)


@contacts_router.put("", response_model=ContactPersonRead)
def update_contact_person(id: int, payload: ContactPersonUpdate, service: Service) -> ContactPersonRead:
    try:
        return ContactPersonRead.model_validate(service.update_contact_person(id, payload))
    except LimsError as exc:
        raise_http_error(exc)


@contacts_router.delete("", response_model=DeleteResult[ContactPersonRead])
def delete_contact_person(id: int, service: Service) -> DeleteResult[ContactPersonRead]:
    try:
        row = service.delete_contact_person(id)
        return DeleteResult[ContactPersonRead](
            message="Contact person deleted successfully",
            deleted_record=ContactPersonRead.model_validate(row),
        )
    except LimsError as exc:
        raise_http_error(exc)


@employees_router.get("", response_model=EmployeeRead | list[EmployeeRead])
def list_employees(
    service: Service,
    id: int | None = None,
    department: str | None = None,
    search: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> EmployeeRead | list[EmployeeRead]:
    try:
        if id is not None:
            return EmployeeRead.model_validate(service.get_employee(id))
        rows = service.list_employees(department=department, search=search, limit=limit, offset=offset)
        return [EmployeeRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)


@employees_router.post("", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
def create_employee(payload: EmployeeCreate, service: Service) -> EmployeeRead:
    try:
        return EmployeeRead.model_validate(service.create_employee(payload))
    except LimsError as exc:
        raise_http_error(exc)


@employees_router.put("", response_model=EmployeeRead)
def update_employee(id: int, payload: EmployeeUpdate, service: Service) -> EmployeeRead:
    try:
        return EmployeeRead.model_validate(service.update_employee(id, payload))
    except LimsError as exc:
        raise_http_error(exc)


@employees_router.delete("", response_model=DeleteResult[EmployeeRead])
def delete_employee(id: int, service: Service) -> DeleteResult[EmployeeRead]:
    try:
        row = service.delete_employee(id)
        return DeleteResult[EmployeeRead](
            message="Employee deleted successfully",
            deleted_record=EmployeeRead.model_validate(row),
        )
    except LimsError as exc:
        raise_http_error(exc)
