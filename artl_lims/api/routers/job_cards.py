from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from artl_lims.api.deps import raise_http_error
from artl_lims.domain.errors import LimsError
from artl_lims.domain.models import JobCardNumberRead
from artl_lims.services.job_card_service import JobCardService

router = APIRouter()


def get_job_card_service() -> JobCardService:
    return JobCardService()


Service = Annotated[JobCardService, Depends(get_job_card_service)]


@router.get("/job-card-next", response_model=JobCardNumberRead)
def next_job_card_number(service: Service) -> JobCardNumberRead:
    try:
        return service.next_job_card_number()
    except LimsError as exc:
        raise_http_error(exc)
