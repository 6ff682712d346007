from __future__ import annotations

import pytest

from artl_lims.domain.state_machine import (
    SERVICE_REQUEST_WORKFLOW,
    ServiceRequestStatus,
    TaskStatus,
    can_admin_set_task_status,
    can_service_request_transition,
    can_task_transition,
    is_forward_transition,
)


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (TaskStatus.QUEUED, TaskStatus.IN_PROGRESS, True),
        (TaskStatus.QUEUED, TaskStatus.QUEUED, True),
        (TaskStatus.QUEUED, TaskStatus.COMPLETED, False),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, True),
        (TaskStatus.IN_PROGRESS, TaskStatus.QUEUED, True),
        (TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, False),
        (TaskStatus.CANCELLED, TaskStatus.QUEUED, False),
        (TaskStatus.TRANSFERRED, TaskStatus.QUEUED, False),
    ],
)
def test_task_transitions(source: TaskStatus, target: TaskStatus, allowed: bool) -> None:
    assert can_task_transition(source, target) is allowed


def test_plain_update_may_only_cancel_active_tasks() -> None:
    assert can_admin_set_task_status(TaskStatus.QUEUED, TaskStatus.CANCELLED)
    assert can_admin_set_task_status(TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED)
    assert not can_admin_set_task_status(TaskStatus.QUEUED, TaskStatus.IN_PROGRESS)
    assert not can_admin_set_task_status(TaskStatus.COMPLETED, TaskStatus.CANCELLED)


def test_service_request_transitions_are_permissive() -> None:
    for source in ServiceRequestStatus:
        for target in ServiceRequestStatus:
            assert can_service_request_transition(source, target)


def test_workflow_order_and_direction() -> None:
    assert SERVICE_REQUEST_WORKFLOW[0] == ServiceRequestStatus.REQUESTED
    assert SERVICE_REQUEST_WORKFLOW[-1] == ServiceRequestStatus.REPORTED
    assert is_forward_transition(ServiceRequestStatus.AGREED, ServiceRequestStatus.TESTING)
    assert not is_forward_transition(ServiceRequestStatus.COMPLETED, ServiceRequestStatus.TESTING)
