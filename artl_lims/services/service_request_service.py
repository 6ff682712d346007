from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from artl_lims.domain.actors import SYSTEM_ACTOR, resolve_actor
from artl_lims.domain.errors import (
    ConflictError,
    NotFoundError,
    UniqueConstraintViolation,
    ValidationError,
)
from artl_lims.domain.models import (
    Company,
    ContactPerson,
    Employee,
    ServiceRequest,
    ServiceRequestCreate,
    ServiceRequestStatusChange,
    ServiceRequestUpdate,
    StatusHistory,
    TestBed,
)
from artl_lims.domain.state_machine import (
    ServiceRequestStatus,
    can_service_request_transition,
    is_forward_transition,
)
from artl_lims.infra.audit import append_activity, append_status_history, field_changes
from artl_lims.infra.clock import Clock, system_clock
from artl_lims.infra.db import get_engine
from artl_lims.infra.unit_of_work import UnitOfWork, is_unique_violation
from artl_lims.services.pagination import clamp_limit, clamp_offset
from artl_lims.services.testbed_sync import occupy_testbed_for_service_request, release_testbed_if_idle

logger = logging.getLogger(__name__)

SERVICE_REQUEST_ENTITY = "service_request"

_OPTIONAL_TEXT_FIELDS = (
    "product_description",
    "test_type",
    "special_requirements",
    "dc_number",
    "notes",
)
_REQUIRED_TEXT_FIELDS = {
    "job_card_number": ("INVALID_JOB_CARD_NUMBER", "Job card number cannot be empty"),
    "product_name": ("INVALID_PRODUCT_NAME", "Product name cannot be empty"),
}
_REFERENCES: dict[str, tuple[type[Any], str, str]] = {
    "company_id": (Company, "INVALID_COMPANY_ID", "Company not found"),
    "contact_person_id": (ContactPerson, "INVALID_CONTACT_PERSON_ID", "Contact person not found"),
    "assigned_employee_id": (Employee, "INVALID_EMPLOYEE_ID", "Employee not found"),
    "assigned_testbed_id": (TestBed, "INVALID_TESTBED_ID", "Test bed not found"),
}


def _clean_text(values: dict[str, Any]) -> dict[str, Any]:
    cleaned = dict(values)
    for field, (code, message) in _REQUIRED_TEXT_FIELDS.items():
        if field in cleaned:
            value = (cleaned[field] or "").strip()
            if not value:
                raise ValidationError(code, message)
            cleaned[field] = value
    for field in _OPTIONAL_TEXT_FIELDS:
        if field in cleaned and cleaned[field] is not None:
            cleaned[field] = cleaned[field].strip() or None
    return cleaned


class ServiceRequestService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, service_request_id: int, code: str = "NOT_FOUND") -> ServiceRequest:
        service_request = session.get(ServiceRequest, service_request_id)
        if service_request is None:
            raise NotFoundError(code, "Service request not found")
        return service_request

    def _validate_references(self, session: Session, values: dict[str, Any]) -> None:
        for field, (model, code, message) in _REFERENCES.items():
            value = values.get(field)
            if value is not None and session.get(model, value) is None:
                raise ValidationError(code, message)

    def _ensure_unique_job_card(self, session: Session, job_card_number: str, exclude_id: int | None = None) -> None:
        statement = select(ServiceRequest.id).where(ServiceRequest.job_card_number == job_card_number)
        if exclude_id is not None:
            statement = statement.where(ServiceRequest.id != exclude_id)
        if session.exec(statement).first() is not None:
            raise UniqueConstraintViolation("DUPLICATE_JOB_CARD_NUMBER", "Job card number already exists")

    def _commit(self, uow: UnitOfWork) -> None:
        try:
            uow.commit()
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise UniqueConstraintViolation(
                    "DUPLICATE_JOB_CARD_NUMBER",
                    "Job card number already exists",
                ) from exc
            raise ConflictError("CONSTRAINT_VIOLATION", "Service request violates a data constraint") from exc

    def _apply_status_effects(
        self,
        uow: UnitOfWork,
        service_request: ServiceRequest,
        target: ServiceRequestStatus,
        at: datetime,
    ) -> None:
        reason = f"service request {service_request.id} {target}"
        if target == ServiceRequestStatus.TESTING:
            if service_request.testing_start_date is None:
                service_request.testing_start_date = at
            if service_request.assigned_testbed_id is not None:
                occupy_testbed_for_service_request(uow, service_request.assigned_testbed_id, at=at, reason=reason)
        elif target == ServiceRequestStatus.COMPLETED:
            if service_request.completion_date is None:
                service_request.completion_date = at
            if service_request.assigned_testbed_id is not None:
                release_testbed_if_idle(
                    uow,
                    service_request.assigned_testbed_id,
                    at=at,
                    reason=reason,
                    exclude_service_request_id=service_request.id,
                )

    def _reassign_testbed(
        self,
        uow: UnitOfWork,
        service_request: ServiceRequest,
        previous_testbed_id: int | None,
        at: datetime,
    ) -> None:
        reason = f"service request {service_request.id} reassigned"
        if previous_testbed_id is not None:
            release_testbed_if_idle(
                uow,
                previous_testbed_id,
                at=at,
                reason=reason,
                exclude_service_request_id=service_request.id,
            )
        if service_request.assigned_testbed_id is not None and service_request.status == ServiceRequestStatus.TESTING:
            occupy_testbed_for_service_request(uow, service_request.assigned_testbed_id, at=at, reason=reason)

    def _record_transition(
        self,
        uow: UnitOfWork,
        service_request: ServiceRequest,
        previous: ServiceRequestStatus | None,
        *,
        at: datetime,
        changed_by: str,
        notes: str | None,
    ) -> None:
        append_status_history(
            uow.session,
            service_request_id=service_request.id,
            status=service_request.status,
            at=at,
            changed_by=changed_by,
            notes=notes,
        )
        uow.record_event(
            "service_request.status_changed",
            {
                "service_request_id": service_request.id,
                "from_status": str(previous) if previous is not None else None,
                "to_status": str(service_request.status),
            },
            actor_id=changed_by,
        )

    def create_service_request(self, payload: ServiceRequestCreate, actor: str = SYSTEM_ACTOR) -> ServiceRequest:
        values = payload.model_dump()
        try:
            values = _clean_text(values)
        except ValidationError as exc:
            # A blank value on create means the field was not supplied.
            raise ValidationError(exc.code.replace("INVALID_", "MISSING_", 1), exc.message) from exc

        with UnitOfWork() as uow:
            session = uow.session
            self._validate_references(session, values)
            self._ensure_unique_job_card(session, values["job_card_number"])

            now = self._clock()
            service_request = ServiceRequest(**values, created_at=now, updated_at=now)
            session.add(service_request)
            try:
                uow.flush()
            except IntegrityError as exc:
                raise UniqueConstraintViolation("DUPLICATE_JOB_CARD_NUMBER", "Job card number already exists") from exc
            status = ServiceRequestStatus(service_request.status)
            self._apply_status_effects(uow, service_request, status, now)
            append_activity(
                session,
                entity_type=SERVICE_REQUEST_ENTITY,
                entity_id=service_request.id,
                action="created",
                at=now,
                performed_by=actor,
                new_value=status,
                metadata={
                    "jobCardNumber": service_request.job_card_number,
                    "productName": service_request.product_name,
                },
            )
            self._record_transition(
                uow,
                service_request,
                None,
                at=now,
                changed_by=actor,
                notes="Service request created",
            )
            uow.record_event(
                "service_request.created",
                {"service_request_id": service_request.id, "job_card_number": service_request.job_card_number},
                actor_id=actor,
            )
            self._commit(uow)

        logger.info("service request %s created (%s)", service_request.id, service_request.job_card_number)
        return service_request

    def get_service_request(self, service_request_id: int) -> ServiceRequest:
        with self._session() as session:
            return self._get(session, service_request_id)

    def list_service_requests(
        self,
        *,
        search: str | None = None,
        status: ServiceRequestStatus | None = None,
        company_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ServiceRequest]:
        with self._session() as session:
            statement = select(ServiceRequest)
            if search:
                pattern = f"%{search}%"
                statement = statement.where(
                    or_(
                        col(ServiceRequest.job_card_number).like(pattern),
                        col(ServiceRequest.product_name).like(pattern),
                    )
                )
            if status is not None:
                statement = statement.where(ServiceRequest.status == status)
            if company_id is not None:
                statement = statement.where(ServiceRequest.company_id == company_id)
            statement = (
                statement.order_by(col(ServiceRequest.created_at).desc(), col(ServiceRequest.id).desc())
                .offset(clamp_offset(offset))
                .limit(clamp_limit(limit))
            )
            return list(session.exec(statement).all())

    def update_service_request(
        self,
        service_request_id: int,
        payload: ServiceRequestUpdate,
        actor: str = SYSTEM_ACTOR,
    ) -> ServiceRequest:
        changes = _clean_text(payload.model_dump(exclude_unset=True))
        if "company_id" in changes and changes["company_id"] is None:
            raise ValidationError("INVALID_COMPANY_ID", "Valid company ID is required")
        if "dc_verified" in changes and changes["dc_verified"] is None:
            changes.pop("dc_verified")
        if "status" in changes and changes["status"] is None:
            raise ValidationError("INVALID_STATUS", "Status cannot be empty")

        with UnitOfWork() as uow:
            session = uow.session
            service_request = self._get(session, service_request_id)
            self._validate_references(session, changes)
            if "job_card_number" in changes:
                self._ensure_unique_job_card(session, changes["job_card_number"], exclude_id=service_request_id)

            previous_status = ServiceRequestStatus(service_request.status)
            previous_testbed_id = service_request.assigned_testbed_id
            target_status = changes.get("status", previous_status)
            if not can_service_request_transition(previous_status, target_status):
                raise ConflictError("INVALID_STATUS_TRANSITION", f"Cannot move from {previous_status} to {target_status}")

            now = self._clock()
            before = {field: getattr(service_request, field) for field in changes}
            for field, value in changes.items():
                setattr(service_request, field, value)
            service_request.updated_at = now
            session.add(service_request)

            if service_request.assigned_testbed_id != previous_testbed_id:
                self._reassign_testbed(uow, service_request, previous_testbed_id, now)
            status_changed = target_status != previous_status
            if status_changed:
                self._apply_status_effects(uow, service_request, target_status, now)
                self._record_transition(
                    uow,
                    service_request,
                    previous_status,
                    at=now,
                    changed_by=actor,
                    notes=None,
                )

            changed = field_changes(before, changes)
            for field, old_value, new_value in changed:
                append_activity(
                    session,
                    entity_type=SERVICE_REQUEST_ENTITY,
                    entity_id=service_request_id,
                    action="updated",
                    at=now,
                    performed_by=actor,
                    field_name=to_camel(field),
                    old_value=old_value,
                    new_value=new_value,
                    metadata={"jobCardNumber": service_request.job_card_number},
                )
            uow.record_event(
                "service_request.updated",
                {"service_request_id": service_request_id, "fields": [to_camel(field) for field, _, _ in changed]},
                actor_id=actor,
            )
            self._commit(uow)

        if status_changed:
            logger.info("service request %s %s -> %s", service_request_id, previous_status, target_status)
        return service_request

    def change_status(
        self,
        service_request_id: int,
        payload: ServiceRequestStatusChange,
        actor: str = SYSTEM_ACTOR,
    ) -> ServiceRequest:
        changed_by = resolve_actor(payload.changed_by, actor)
        notes = payload.notes.strip() if payload.notes and payload.notes.strip() else None

        with UnitOfWork() as uow:
            session = uow.session
            service_request = self._get(session, service_request_id)
            previous = ServiceRequestStatus(service_request.status)
            if not can_service_request_transition(previous, payload.status):
                raise ConflictError("INVALID_STATUS_TRANSITION", f"Cannot move from {previous} to {payload.status}")

            now = self._clock()
            service_request.status = payload.status
            service_request.updated_at = now
            session.add(service_request)
            if payload.status != previous:
                self._apply_status_effects(uow, service_request, payload.status, now)
                append_activity(
                    session,
                    entity_type=SERVICE_REQUEST_ENTITY,
                    entity_id=service_request_id,
                    action="status_changed",
                    at=now,
                    performed_by=changed_by,
                    field_name="status",
                    old_value=previous,
                    new_value=payload.status,
                    metadata={
                        "jobCardNumber": service_request.job_card_number,
                        "forward": is_forward_transition(previous, payload.status),
                    },
                )
            # History is written even when the status is re-applied unchanged.
            self._record_transition(uow, service_request, previous, at=now, changed_by=changed_by, notes=notes)
            self._commit(uow)

        logger.info("service request %s status %s -> %s by %s", service_request_id, previous, payload.status, changed_by)
        return service_request

    def list_history(self, service_request_id: int) -> list[StatusHistory]:
        with self._session() as session:
            self._get(session, service_request_id, code="SERVICE_REQUEST_NOT_FOUND")
            statement = (
                select(StatusHistory)
                .where(StatusHistory.service_request_id == service_request_id)
                .order_by(col(StatusHistory.changed_at).asc(), col(StatusHistory.id).asc())
            )
            return list(session.exec(statement).all())

    def delete_service_request(self, service_request_id: int, actor: str = SYSTEM_ACTOR) -> ServiceRequest:
        with UnitOfWork() as uow:
            session = uow.session
            service_request = self._get(session, service_request_id)
            session.delete(service_request)
            append_activity(
                session,
                entity_type=SERVICE_REQUEST_ENTITY,
                entity_id=service_request_id,
                action="deleted",
                at=self._clock(),
                performed_by=actor,
                old_value=service_request.status,
                metadata={"jobCardNumber": service_request.job_card_number},
            )
            uow.record_event(
                "service_request.deleted",
                {"service_request_id": service_request_id, "job_card_number": service_request.job_card_number},
                actor_id=actor,
            )
            try:
                uow.commit()
            except IntegrityError as exc:
                raise ConflictError(
                    "CONSTRAINT_VIOLATION",
                    "Service request is still referenced by testbed tasks",
                ) from exc
        return service_request
