"""Domain records for users and payments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class User:
    """Public view of an account. The password hash never leaves the database layer."""

    id: str
    username: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Payment:
    """A payment record owned by a single user."""

    id: str
    user_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    created_at: datetime


__all__ = ["Payment", "PaymentStatus", "User"]
