from __future__ import annotations

from enum import StrEnum


class TestbedStatus(StrEnum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"


class TaskStatus(StrEnum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TRANSFERRED = "transferred"


class TaskPriority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Queue ordering rank, lower runs first.
PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.URGENT: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.NORMAL: 3,
    TaskPriority.LOW: 4,
}

ACTIVE_TASK_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.QUEUED, TaskStatus.IN_PROGRESS})

# Transfer re-enters the destination queue, hence QUEUED -> QUEUED.
TASK_ALLOWED_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.QUEUED: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED, TaskStatus.QUEUED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.QUEUED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
    TaskStatus.TRANSFERRED: set(),
}

# Status changes accepted through a plain task update; start, complete and
# transfer have their own operations.
TASK_ADMIN_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.QUEUED: {TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.CANCELLED},
}


def can_task_transition(source: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_ALLOWED_TRANSITIONS.get(source, set())


def can_admin_set_task_status(source: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_ADMIN_TRANSITIONS.get(source, set())


class ServiceRequestStatus(StrEnum):
    REQUESTED = "requested"
    REPLIED = "replied"
    SRF_FILLED = "srf_filled"
    AGREED = "agreed"
    MATERIAL_RECEIVED = "material_received"
    TESTING = "testing"
    COMPLETED = "completed"
    REPORTED = "reported"


SERVICE_REQUEST_WORKFLOW: tuple[ServiceRequestStatus, ...] = (
    ServiceRequestStatus.REQUESTED,
    ServiceRequestStatus.REPLIED,
    ServiceRequestStatus.SRF_FILLED,
    ServiceRequestStatus.AGREED,
    ServiceRequestStatus.MATERIAL_RECEIVED,
    ServiceRequestStatus.TESTING,
    ServiceRequestStatus.COMPLETED,
    ServiceRequestStatus.REPORTED,
)


def can_service_request_transition(source: ServiceRequestStatus, target: ServiceRequestStatus) -> bool:
    """Any workflow stage may be set from any other (manual corrections included)."""
    return source in SERVICE_REQUEST_WORKFLOW and target in SERVICE_REQUEST_WORKFLOW


def is_forward_transition(source: ServiceRequestStatus, target: ServiceRequestStatus) -> bool:
    return SERVICE_REQUEST_WORKFLOW.index(target) > SERVICE_REQUEST_WORKFLOW.index(source)
