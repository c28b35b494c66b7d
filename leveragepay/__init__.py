"""LeveragePay: user accounts and payment records behind a small REST API."""

from __future__ import annotations

from typing import Any

from .database import Database
from .errors import (
    Conflict,
    Forbidden,
    NotFound,
    ServiceError,
    Unauthorized,
    Unavailable,
    ValidationError,
)
from .models import Payment, PaymentStatus, User


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the FastAPI application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Conflict",
    "Database",
    "Forbidden",
    "NotFound",
    "Payment",
    "PaymentStatus",
    "ServiceError",
    "Unauthorized",
    "Unavailable",
    "User",
    "ValidationError",
    "create_app",
]
