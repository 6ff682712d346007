from __future__ import annotations

import re
from typing import Annotated, Any, NoReturn

from fastapi import Depends, Header, HTTPException, status

from artl_lims.domain.actors import resolve_actor
from artl_lims.domain.errors import LimsError, NotFoundError

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_request_actor(x_actor: Annotated[str | None, Header()] = None) -> str:
    """Caller identity from the ``X-Actor`` header, else the system actor."""
    return resolve_actor(x_actor)


Actor = Annotated[str, Depends(get_request_actor)]


def error_detail(code: str, message: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"code": code, "message": message, **(extra or {})}


def raise_http_error(exc: LimsError) -> NoReturn:
    status_code = status.HTTP_404_NOT_FOUND if isinstance(exc, NotFoundError) else status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=status_code, detail=error_detail(exc.code, exc.message, exc.detail)) from exc


def field_error_code(loc: tuple[Any, ...], error_type: str) -> str:
    """Map a request validation error location to a machine-readable code."""
    if loc and loc[0] == "path":
        return "INVALID_ID"
    fields = [part for part in loc[1:] if isinstance(part, str)]
    if not fields:
        return "INVALID_REQUEST"
    name = _CAMEL_BOUNDARY.sub("_", fields[0]).upper()
    prefix = "MISSING" if error_type == "missing" else "INVALID"
    return f"{prefix}_{name}"
