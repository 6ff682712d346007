from __future__ import annotations

from typing import Any


class LimsError(Exception):
    """Base for service failures; ``code`` is the machine-readable reason."""

    def __init__(self, code: str, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.detail = detail or {}


class ValidationError(LimsError):
    pass


class NotFoundError(LimsError):
    pass


class ConflictError(LimsError):
    pass


class UniqueConstraintViolation(ConflictError):
    pass
