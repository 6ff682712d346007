from __future__ import annotations

from sqlmodel import Session, col, select

from artl_lims.domain.actors import optional_actor
from artl_lims.domain.errors import NotFoundError, ValidationError
from artl_lims.domain.models import (
    ActivityLog,
    ActivityLogCreate,
    ServiceRequest,
    StatusHistory,
    StatusHistoryCreate,
    StatusHistoryUpdate,
)
from artl_lims.domain.state_machine import ServiceRequestStatus
from artl_lims.infra.audit import append_activity, append_status_history
from artl_lims.infra.clock import Clock, system_clock
from artl_lims.infra.db import get_engine
from artl_lims.infra.unit_of_work import UnitOfWork
from artl_lims.services.pagination import clamp_limit, clamp_offset


def _required_text(value: str | None, code: str, message: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        raise ValidationError(code, message)
    return stripped


def _workflow_status(value: str | None, empty_code: str) -> str:
    status = _required_text(value, empty_code, "Status cannot be empty")
    if status not in {item.value for item in ServiceRequestStatus}:
        allowed = ", ".join(item.value for item in ServiceRequestStatus)
        raise ValidationError("INVALID_STATUS", f"Invalid status. Must be one of: {allowed}")
    return status


class ActivityLogService:
    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def get_entry(self, entry_id: int) -> ActivityLog:
        with self._session() as session:
            entry = session.get(ActivityLog, entry_id)
            if entry is None:
                raise NotFoundError("NOT_FOUND", "Activity log not found")
            return entry

    def list_entries(
        self,
        *,
        entity_type: str | None = None,
        entity_id: int | None = None,
        action: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ActivityLog]:
        with self._session() as session:
            statement = select(ActivityLog)
            if entity_type:
                statement = statement.where(ActivityLog.entity_type == entity_type)
            if entity_id is not None:
                statement = statement.where(ActivityLog.entity_id == entity_id)
            if action:
                statement = statement.where(ActivityLog.action == action)
            statement = (
                statement.order_by(col(ActivityLog.timestamp).desc(), col(ActivityLog.id).desc())
                .offset(clamp_offset(offset))
                .limit(clamp_limit(limit))
            )
            return list(session.exec(statement).all())

    def record_entry(self, payload: ActivityLogCreate) -> ActivityLog:
        entity_type = _required_text(payload.entity_type, "MISSING_ENTITY_TYPE", "entityType is required")
        action = _required_text(payload.action, "MISSING_ACTION", "action is required")
        with UnitOfWork() as uow:
            entry = append_activity(
                uow.session,
                entity_type=entity_type,
                entity_id=payload.entity_id,
                action=action,
                at=self._clock(),
                performed_by=optional_actor(payload.performed_by),
                field_name=payload.field_name,
                old_value=payload.old_value,
                new_value=payload.new_value,
                reason=payload.reason,
                metadata=payload.meta,
            )
            uow.commit()
        return entry


class StatusHistoryService:
    """Administrative access to status history rows.

    The workflow itself appends history through the service-request state
    machine; this service exists for corrections and display.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or system_clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get(self, session: Session, entry_id: int) -> StatusHistory:
        entry = session.get(StatusHistory, entry_id)
        if entry is None:
            raise NotFoundError("NOT_FOUND", "Status history record not found")
        return entry

    def get_entry(self, entry_id: int) -> StatusHistory:
        with self._session() as session:
            return self._get(session, entry_id)

    def list_entries(
        self,
        *,
        service_request_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[StatusHistory]:
        with self._session() as session:
            statement = select(StatusHistory)
            if service_request_id is not None:
                statement = statement.where(StatusHistory.service_request_id == service_request_id)
            statement = (
                statement.order_by(col(StatusHistory.changed_at).desc(), col(StatusHistory.id).desc())
                .offset(clamp_offset(offset))
                .limit(clamp_limit(limit))
            )
            return list(session.exec(statement).all())

    def create_entry(self, payload: StatusHistoryCreate) -> StatusHistory:
        status = _workflow_status(payload.status, "EMPTY_STATUS")
        with UnitOfWork() as uow:
            if uow.session.get(ServiceRequest, payload.service_request_id) is None:
                raise ValidationError("SERVICE_REQUEST_NOT_FOUND", "Service request not found")
            entry = append_status_history(
                uow.session,
                service_request_id=payload.service_request_id,
                status=status,
                at=self._clock(),
                changed_by=optional_actor(payload.changed_by),
                notes=payload.notes.strip() if payload.notes else None,
            )
            uow.commit()
        return entry

    def update_entry(self, entry_id: int, payload: StatusHistoryUpdate) -> StatusHistory:
        changes = payload.model_dump(exclude_unset=True)
        if "status" in changes:
            changes["status"] = _workflow_status(changes["status"], "EMPTY_STATUS")
        if "changed_by" in changes:
            changes["changed_by"] = optional_actor(changes["changed_by"])
        if changes.get("notes") is not None:
            changes["notes"] = changes["notes"].strip() or None

        with UnitOfWork() as uow:
            entry = self._get(uow.session, entry_id)
            for field, value in changes.items():
                setattr(entry, field, value)
            uow.session.add(entry)
            uow.commit()
        return entry

    def delete_entry(self, entry_id: int) -> StatusHistory:
        with UnitOfWork() as uow:
            entry = self._get(uow.session, entry_id)
            uow.session.delete(entry)
            uow.commit()
        return entry
