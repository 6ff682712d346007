from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from artl_lims.api.deps import raise_http_error
from artl_lims.api.routers.testbed_tasks import get_task_queue_service
from artl_lims.domain.errors import LimsError
from artl_lims.domain.models import TestbedTaskTransferRead
from artl_lims.services.task_queue_service import TaskQueueService

router = APIRouter()

Service = Annotated[TaskQueueService, Depends(get_task_queue_service)]


@router.get("", response_model=TestbedTaskTransferRead | list[TestbedTaskTransferRead])
def list_transfers(
    service: Service,
    id: int | None = None,
    task_id: Annotated[int | None, Query(alias="taskId")] = None,
    from_testbed_id: Annotated[int | None, Query(alias="fromTestbedId")] = None,
    to_testbed_id: Annotated[int | None, Query(alias="toTestbedId")] = None,
    limit: int = 10,
    offset: int = 0,
) -> TestbedTaskTransferRead | list[TestbedTaskTransferRead]:
    try:
        if id is not None:
            return TestbedTaskTransferRead.model_validate(service.get_transfer(id))
        rows = service.list_transfers(
            task_id=task_id,
            from_testbed_id=from_testbed_id,
            to_testbed_id=to_testbed_id,
            limit=limit,
            offset=offset,
        )
        return [TestbedTaskTransferRead.model_validate(row) for row in rows]
    except LimsError as exc:
        raise_http_error(exc)
