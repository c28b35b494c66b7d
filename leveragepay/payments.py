"""Payment creation, history and status updates."""
from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Iterator, List, Optional, Union

from .database import Database
from .errors import NotFound, ValidationError
from .models import Payment, PaymentStatus

logger = logging.getLogger("leveragepay.payments")

_CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")


def normalize_amount(amount: Union[Decimal, int, str]) -> Decimal:
    if isinstance(amount, (bool, float)):
        raise ValidationError("amount must be a decimal number")
    try:
        value = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError("amount must be a decimal number") from exc
    if not value.is_finite():
        raise ValidationError("amount must be a finite number")
    if value <= 0:
        raise ValidationError("amount must be greater than zero")
    return value


def normalize_currency(currency: str) -> str:
    stripped = currency.strip()
    if not _CURRENCY_PATTERN.match(stripped):
        raise ValidationError("currency must be a three-letter ISO 4217 code")
    return stripped.upper()


def parse_status(value: Union[str, PaymentStatus]) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError as exc:
        allowed = ", ".join(status.value for status in PaymentStatus)
        raise ValidationError(f"status must be one of: {allowed}") from exc


class PaymentHistory:
    """Lazy view over a user's payments, oldest first.

    Nothing is read until the first iteration; later iterations replay the
    same snapshot.
    """

    def __init__(self, database: Database, user_id: str) -> None:
        self._database = database
        self._user_id = user_id
        self._snapshot: Optional[List[Payment]] = None

    def _load(self) -> List[Payment]:
        if self._snapshot is None:
            self._snapshot = self._database.list_payments_for_user(self._user_id)
        return self._snapshot

    def __iter__(self) -> Iterator[Payment]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())


class PaymentService:
    """Records payments for registered users."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def _require_user(self, user_id: str) -> None:
        if not self._database.user_exists(user_id):
            raise NotFound("User not found")

    def create_payment(self, user_id: str, amount: Union[Decimal, int, str], currency: str) -> Payment:
        """Store a new ``pending`` payment for ``user_id``."""

        value = normalize_amount(amount)
        code = normalize_currency(currency)
        self._require_user(user_id)

        payment = self._database.insert_payment(user_id, value, code)
        logger.info(
            "Created payment %s for user %s: %s %s",
            payment.id,
            user_id,
            payment.amount,
            payment.currency,
        )
        return payment

    def list_payments_for_user(self, user_id: str) -> PaymentHistory:
        self._require_user(user_id)
        return PaymentHistory(self._database, user_id)

    def get_payment(self, payment_id: str) -> Payment:
        payment = self._database.get_payment(payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    def update_status(self, payment_id: str, new_status: Union[str, PaymentStatus]) -> Payment:
        """Move a payment to ``new_status``; triggered by settlement outside this service."""

        status = parse_status(new_status)
        payment = self._database.update_payment_status(payment_id, status)
        if payment is None:
            raise NotFound("Payment not found")
        logger.info("Payment %s is now %s", payment_id, status.value)
        return payment


__all__ = [
    "PaymentHistory",
    "PaymentService",
    "normalize_amount",
    "normalize_currency",
    "parse_status",
]
