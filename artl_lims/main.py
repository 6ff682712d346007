from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from artl_lims.api.deps import error_detail, field_error_code
from artl_lims.api.routers import (
    audit_trail,
    directory,
    job_cards,
    service_requests,
    test_beds,
    testbed_tasks,
    transfers,
)
from artl_lims.infra.db import check_db_ready
from artl_lims.infra.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="artl-lims",
    description="Lab information system core: test-bed task queue and service-request workflow.",
    version="0.1.0",
)

app.include_router(test_beds.router, prefix="/test-beds", tags=["test-beds"])
app.include_router(testbed_tasks.router, prefix="/testbed-tasks", tags=["testbed-tasks"])
app.include_router(transfers.router, prefix="/testbed-task-transfers", tags=["testbed-tasks"])
app.include_router(service_requests.router, prefix="/service-requests", tags=["service-requests"])
app.include_router(audit_trail.history_router, prefix="/status-history", tags=["audit"])
app.include_router(audit_trail.activity_router, prefix="/activity-logs", tags=["audit"])
app.include_router(job_cards.router, tags=["job-cards"])
app.include_router(directory.companies_router, prefix="/companies", tags=["directory"])
app.include_router(directory.contacts_router, prefix="/contact-persons", tags=["directory"])
app.include_router(directory.employees_router, prefix="/employees", tags=["directory"])


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {"loc": (), "type": "value_error", "msg": "Invalid request"}
    code = field_error_code(tuple(first.get("loc", ())), str(first.get("type", "")))
    detail = error_detail(
        code,
        str(first.get("msg", "Invalid request")),
        {"errors": [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in errors]},
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": error_detail("INTERNAL_ERROR", f"Internal server error: {exc}")},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
