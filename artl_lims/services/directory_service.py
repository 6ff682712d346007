from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, col, select

from artl_lims.domain.errors import ConflictError, NotFoundError, UniqueConstraintViolation, ValidationError
from artl_lims.domain.models import (
    Company,
    CompanyCreate,
    CompanyUpdate,
    ContactPerson,
    ContactPersonCreate,
    ContactPersonUpdate,
    Employee,
    EmployeeCreate,
    EmployeeUpdate,
)
from artl_lims.infra.clock import Clock, system_clock
from artl_lims.infra.db import get_engine
from artl_lims.infra.unit_of_work import UnitOfWork, is_unique_violation
from artl_lims.services.pagination import clamp_limit, clamp_offset

RowT = TypeVar("RowT", bound=SQLModel)


def _clean(values: dict[str, Any], required: dict[str, str], *, creating: bool) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for field, value in values.items():
        if isinstance(value, str):
            value = value.strip() or None
        if field in required and value is None:
            prefix = "MISSING" if creating else "INVALID"
            raise ValidationError(f"{prefix}_{field.upper()}", required[field])
        cleaned[field] = value
    return cleaned


class DirectoryService:
    """Companies, their contact persons, and lab employees."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, model: type[RowT], row_id: int, label: str) -> RowT:
        row = session.get(model, row_id)
        if row is None:
            raise NotFoundError("NOT_FOUND", f"{label} not found")
        return row

    def _list(
        self,
        model: type[RowT],
        *,
        search: str | None,
        limit: int | None,
        offset: int | None,
        filters: dict[str, Any] | None = None,
    ) -> list[RowT]:
        with self._session() as session:
            statement = select(model)
            if search:
                statement = statement.where(col(model.name).like(f"%{search}%"))  # type: ignore[attr-defined]
            for field, value in (filters or {}).items():
                if value is not None:
                    statement = statement.where(getattr(model, field) == value)
            statement = (
                statement.order_by(col(model.created_at).desc())  # type: ignore[attr-defined]
                .offset(clamp_offset(offset))
                .limit(clamp_limit(limit))
            )
            return list(session.exec(statement).all())

    def _save(self, uow: UnitOfWork, row: SQLModel) -> None:
        uow.session.add(row)
        try:
            uow.commit()
        except IntegrityError as exc:
            if isinstance(row, Employee) and is_unique_violation(exc):
                raise UniqueConstraintViolation("DUPLICATE_EMPLOYEE_CODE", "Employee code already exists") from exc
            raise ConflictError("CONSTRAINT_VIOLATION", "Record violates a data constraint") from exc

    def _delete(self, model: type[RowT], row_id: int, label: str) -> RowT:
        with UnitOfWork() as uow:
            row = self._get(uow.session, model, row_id, label)
            uow.session.delete(row)
            try:
                uow.commit()
            except IntegrityError as exc:
                raise ConflictError("CONSTRAINT_VIOLATION", f"{label} is still referenced") from exc
        return row

    def _ensure_company(self, session: Session, company_id: int | None) -> None:
        if company_id is not None and session.get(Company, company_id) is None:
            raise ValidationError("INVALID_COMPANY_ID", "Company not found")

    def create_company(self, payload: CompanyCreate) -> Company:
        values = _clean(payload.model_dump(), {"name": "Name is required"}, creating=True)
        with UnitOfWork() as uow:
            company = Company(**values, created_at=self._clock())
            self._save(uow, company)
        return company

    def get_company(self, company_id: int) -> Company:
        with self._session() as session:
            return self._get(session, Company, company_id, "Company")

    def list_companies(
        self,
        *,
        search: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Company]:
        return self._list(Company, search=search, limit=limit, offset=offset)

    def update_company(self, company_id: int, payload: CompanyUpdate) -> Company:
        changes = _clean(payload.model_dump(exclude_unset=True), {"name": "Name cannot be empty"}, creating=False)
        with UnitOfWork() as uow:
            company = self._get(uow.session, Company, company_id, "Company")
            for field, value in changes.items():
                setattr(company, field, value)
            self._save(uow, company)
        return company

    def delete_company(self, company_id: int) -> Company:
        return self._delete(Company, company_id, "Company")

    def create_contact_person(self, payload: ContactPersonCreate) -> ContactPerson:
        values = _clean(
            payload.model_dump(),
            {"name": "Name is required", "email": "Email is required"},
            creating=True,
        )
        with UnitOfWork() as uow:
            self._ensure_company(uow.session, values["company_id"])
            contact = ContactPerson(**values, created_at=self._clock())
            self._save(uow, contact)
        return contact

    def get_contact_person(self, contact_id: int) -> ContactPerson:
        with self._session() as session:
            return self._get(session, ContactPerson, contact_id, "Contact person")

    def list_contact_persons(
        self,
        *,
        company_id: int | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ContactPerson]:
        return self._list(
            ContactPerson,
            search=search,
            limit=limit,
            offset=offset,
            filters={"company_id": company_id},
        )

    def update_contact_person(self, contact_id: int, payload: ContactPersonUpdate) -> ContactPerson:
        changes = _clean(
            payload.model_dump(exclude_unset=True),
            {"name": "Name cannot be empty", "email": "Email cannot be empty", "company_id": "Company is required"},
            creating=False,
        )
        with UnitOfWork() as uow:
            contact = self._get(uow.session, ContactPerson, contact_id, "Contact person")
            self._ensure_company(uow.session, changes.get("company_id"))
            for field, value in changes.items():
                setattr(contact, field, value)
            self._save(uow, contact)
        return contact

    def delete_contact_person(self, contact_id: int) -> ContactPerson:
        return self._delete(ContactPerson, contact_id, "Contact person")

    def create_employee(self, payload: EmployeeCreate) -> Employee:
        values = _clean(
            payload.model_dump(),
            {"name": "Name is required", "email": "Email is required"},
            creating=True,
        )
        with UnitOfWork() as uow:
            if values.get("employee_code") is not None:
                duplicate = uow.session.exec(
                    select(Employee.id).where(Employee.employee_code == values["employee_code"])
                ).first()
                if duplicate is not None:
                    raise UniqueConstraintViolation("DUPLICATE_EMPLOYEE_CODE", "Employee code already exists")
            employee = Employee(**values, created_at=self._clock())
            self._save(uow, employee)
        return employee

    def get_employee(self, employee_id: int) -> Employee:
        with self._session() as session:
            return self._get(session, Employee, employee_id, "Employee")

    def list_employees(
        self,
        *,
        department: str | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Employee]:
        return self._list(
            Employee,
            search=search,
            limit=limit,
            offset=offset,
            filters={"department": department},
        )

    def update_employee(self, employee_id: int, payload: EmployeeUpdate) -> Employee:
        changes = _clean(
            payload.model_dump(exclude_unset=True),
            {"name": "Name cannot be empty", "email": "Email cannot be empty"},
            creating=False,
        )
        with UnitOfWork() as uow:
            employee = self._get(uow.session, Employee, employee_id, "Employee")
            for field, value in changes.items():
                setattr(employee, field, value)
            self._save(uow, employee)
        return employee

    def delete_employee(self, employee_id: int) -> Employee:
        return self._delete(Employee, employee_id, "Employee")
