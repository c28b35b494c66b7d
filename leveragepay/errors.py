"""Error types shared by the persistence, user and payment layers."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP response."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class ValidationError(ServiceError):
    kind = "validation_error"
    status_code = 400


class Unauthorized(ServiceError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = 403


class NotFound(ServiceError):
    kind = "not_found"
    status_code = 404


class Conflict(ServiceError):
    """Raised when a unique field is already taken."""

    kind = "conflict"
    status_code = 409

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.field is not None:
            payload["field"] = self.field
        return payload


class Unavailable(ServiceError):
    """Raised when the database cannot be reached within the configured timeout."""

    kind = "unavailable"
    status_code = 503


__all__ = [
    "Conflict",
    "Forbidden",
    "NotFound",
    "ServiceError",
    "Unauthorized",
    "Unavailable",
    "ValidationError",
]
