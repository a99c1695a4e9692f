"""
Error variants raised by the loan and inventory operations.

One exception type carries a ``kind`` discriminant; callers branch on
``err.kind`` instead of on subclasses. The HTTP layer maps kinds to status
codes (see ``STATUS_BY_KIND``).
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
}


class AppError(Exception):
    def __init__(self, kind: ErrorKind, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind.value, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"AppError({self.kind.value!r}, {self.message!r}, {self.details!r})"


def not_found(message: str, **details: Any) -> AppError:
    return AppError(ErrorKind.NOT_FOUND, message, details)


def validation_error(message: str, **details: Any) -> AppError:
    return AppError(ErrorKind.VALIDATION, message, details)


def conflict(message: str, **details: Any) -> AppError:
    return AppError(ErrorKind.CONFLICT, message, details)
