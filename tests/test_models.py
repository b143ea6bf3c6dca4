"""Tests for transaction normalization and change notification parsing."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from balance_sync.core.models import ChangeType, Direction, Transaction, TransactionChange, TransactionStatus

from tests.conftest import NOW


def test_signed_amount_without_direction_becomes_magnitude_and_direction() -> None:
    """A legacy negative amount is an outgoing transaction of the same magnitude."""
    txn = Transaction(id="t1", user_id="u", account_id="a", amount="-30", date=NOW)
    if txn.direction != Direction.OUT or txn.amount != Decimal("30"):
        msg = f"Expected out/30, got {txn.direction}/{txn.amount}"
        raise AssertionError(msg)
    if txn.signed_amount != Decimal("-30"):
        msg = f"Expected signed amount -30, got {txn.signed_amount}"
        raise AssertionError(msg)


def test_direction_wins_over_amount_sign() -> None:
    """When a direction is given only the magnitude of the amount is kept."""
    txn = Transaction(id="t1", user_id="u", amount="-30", direction="in", date=NOW)
    if txn.signed_amount != Decimal("30"):
        msg = f"Expected signed amount 30, got {txn.signed_amount}"
        raise AssertionError(msg)


def test_naive_dates_are_utc() -> None:
    """Naive datetimes are taken as UTC."""
    txn = Transaction(id="t1", user_id="u", amount="1", direction="in", date=datetime(2025, 1, 1, 12, 0))  # noqa: DTZ001
    if txn.date != datetime(2025, 1, 1, 12, 0, tzinfo=UTC):
        msg = f"Expected an aware UTC date, got {txn.date!r}"
        raise AssertionError(msg)


def test_change_notification_accepts_camel_case() -> None:
    """Notifications use camelCase on the wire."""
    change = TransactionChange.model_validate(
        {
            "transactionId": "t1",
            "accountId": "acc-1",
            "creditCardId": None,
            "amount": 100,
            "direction": "out",
            "date": "2025-11-09T10:00:00Z",
            "status": "completed",
            "changeType": "update",
            "previousAmount": 80,
        }
    )
    if change.change_type != ChangeType.UPDATE or change.account_id != "acc-1":
        msg = f"Unexpected parse result: {change!r}"
        raise AssertionError(msg)
    previous = change.previous()
    if previous.amount != Decimal("80") or previous.direction != Direction.OUT:
        msg = f"Expected previous out/80, got {previous.direction}/{previous.amount}"
        raise AssertionError(msg)
    if previous.account_id != "acc-1" or previous.status != TransactionStatus.COMPLETED:
        msg = f"Previous state should default to the current one, got {previous!r}"
        raise AssertionError(msg)


def test_explicit_null_previous_account_is_kept() -> None:
    """An explicit null previous account means the transaction had no account before."""
    change = TransactionChange(
        transaction_id="t1",
        account_id="acc-1",
        amount=Decimal("10"),
        direction=Direction.IN,
        date=NOW,
        change_type=ChangeType.UPDATE,
        previous_account_id=None,
    )
    if change.previous().account_id is not None:
        msg = f"Expected no previous account, got {change.previous().account_id}"
        raise AssertionError(msg)


def test_signed_previous_amount_in_legacy_notifications() -> None:
    """Legacy notifications carry signed current and previous amounts."""
    change = TransactionChange.model_validate(
        {
            "transactionId": "t1",
            "accountId": "acc-1",
            "amount": -50,
            "date": "2025-11-09T10:00:00Z",
            "changeType": "update",
            "previousAmount": 20,
        }
    )
    if change.current().signed_amount != Decimal("-50"):
        msg = f"Expected current -50, got {change.current().signed_amount}"
        raise AssertionError(msg)
    if change.previous().signed_amount != Decimal("20"):
        msg = f"Expected previous +20, got {change.previous().signed_amount}"
        raise AssertionError(msg)


@pytest.mark.parametrize(
    "fields",
    [
        {"amount": "abc"},
        {"amount": "NaN"},
        {"amount": "Infinity", "direction": "in"},
        {"amount": "10", "direction": "in", "previousAmount": "abc"},
        {"amount": "10", "previousAmount": "-sNaN"},
    ],
)
def test_malformed_amounts_are_validation_errors(fields: dict) -> None:
    """Unparseable or non-finite amounts are rejected as invalid input."""
    payload = {"transactionId": "t1", "date": "2025-11-09T10:00:00Z", "changeType": "create", **fields}
    with pytest.raises(ValidationError):
        TransactionChange.model_validate(payload)
