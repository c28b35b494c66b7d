from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from leveragepay.database import Database
from leveragepay.errors import NotFound, ValidationError
from leveragepay.models import PaymentStatus, User
from leveragepay.payments import PaymentHistory, PaymentService


@pytest.fixture()
def database(tmp_path: Path):
    db = Database(tmp_path / "payments.sqlite3")
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def service(database: Database) -> PaymentService:
    return PaymentService(database)


@pytest.fixture()
def user(database: Database) -> User:
    return database.insert_user("alice", "alice@example.com", "hash")


def test_create_payment_defaults_to_pending(service: PaymentService, user: User) -> None:
    payment = service.create_payment(user.id, Decimal("12.34"), "usd")

    assert payment.user_id == user.id
    assert payment.amount == Decimal("12.34")
    assert payment.currency == "USD"
    assert payment.status is PaymentStatus.PENDING


@pytest.mark.parametrize("amount", [Decimal("-5"), Decimal("0"), "0.00", "NaN", "Infinity", "abc", 1.5, True])
def test_create_payment_rejects_invalid_amount(service: PaymentService, user: User, amount) -> None:
    with pytest.raises(ValidationError):
        service.create_payment(user.id, amount, "USD")


@pytest.mark.parametrize("currency", ["", "US", "USDT", "U$D", "123"])
def test_create_payment_rejects_invalid_currency(service: PaymentService, user: User, currency: str) -> None:
    with pytest.raises(ValidationError):
        service.create_payment(user.id, Decimal("5"), currency)


def test_create_payment_for_unknown_user(service: PaymentService) -> None:
    with pytest.raises(NotFound):
        service.create_payment("ghost", Decimal("5"), "USD")


def test_history_is_ordered_by_creation(service: PaymentService, user: User) -> None:
    first = service.create_payment(user.id, Decimal("10"), "USD")
    second = service.create_payment(user.id, Decimal("20"), "USD")

    history = service.list_payments_for_user(user.id)

    assert list(history) == [first, second]


def test_history_round_trips_created_records(service: PaymentService, user: User) -> None:
    created = service.create_payment(user.id, "7.250", "EUR")

    (listed,) = list(service.list_payments_for_user(user.id))

    assert listed.id == created.id
    assert listed.amount == created.amount
    assert str(listed.amount) == "7.250"
    assert listed.currency == created.currency
    assert listed.status is PaymentStatus.PENDING
    assert listed.created_at == created.created_at


def test_empty_history_is_not_an_error(service: PaymentService, user: User) -> None:
    history = service.list_payments_for_user(user.id)

    assert list(history) == []
    assert len(history) == 0


def test_history_for_unknown_user(service: PaymentService) -> None:
    with pytest.raises(NotFound):
        service.list_payments_for_user("ghost")


def test_history_is_lazy_and_restartable(service: PaymentService, user: User) -> None:
    history = service.list_payments_for_user(user.id)
    assert isinstance(history, PaymentHistory)

    # Nothing has been read yet, so this payment is part of the snapshot.
    payment = service.create_payment(user.id, Decimal("1"), "USD")
    assert list(history) == [payment]

    service.create_payment(user.id, Decimal("2"), "USD")
    assert list(history) == [payment]
    assert len(list(service.list_payments_for_user(user.id))) == 2


def test_update_status(service: PaymentService, user: User) -> None:
    payment = service.create_payment(user.id, Decimal("3"), "USD")

    updated = service.update_status(payment.id, "completed")

    assert updated.status is PaymentStatus.COMPLETED
    assert updated.created_at == payment.created_at
    assert service.get_payment(payment.id).status is PaymentStatus.COMPLETED


def test_update_status_rejects_unknown_values(service: PaymentService, user: User) -> None:
    payment = service.create_payment(user.id, Decimal("3"), "USD")

    with pytest.raises(ValidationError):
        service.update_status(payment.id, "refunded")
    with pytest.raises(NotFound):
        service.update_status("missing", PaymentStatus.FAILED)
    with pytest.raises(NotFound):
        service.get_payment("missing")
