from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlmodel import Session

from artl_lims.domain.models import ActivityLog, StatusHistory
from artl_lims.infra.clock import as_utc


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def append_activity(
    session: Session,
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    at: datetime,
    performed_by: str | None,
    field_name: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    """Append one activity row inside the caller's transaction."""
    entry = ActivityLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        field_name=field_name,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        reason=reason,
        performed_by=performed_by,
        timestamp=at,
        meta=metadata,
    )
    session.add(entry)
    return entry


def append_status_history(
    session: Session,
    *,
    service_request_id: int,
    status: str,
    at: datetime,
    changed_by: str | None,
    notes: str | None = None,
) -> StatusHistory:
    entry = StatusHistory(
        service_request_id=service_request_id,
        status=status,
        notes=notes,
        changed_by=changed_by,
        changed_at=at,
    )
    session.add(entry)
    return entry


def field_changes(before: dict[str, Any], after: dict[str, Any]) -> list[tuple[str, Any, Any]]:
    """Return ``(field, old, new)`` for every key whose value differs."""
    changes: list[tuple[str, Any, Any]] = []
    for key, new_value in after.items():
        old_value = before.get(key)
        if _as_text(old_value) != _as_text(new_value):
            changes.append((key, old_value, new_value))
    return changes
