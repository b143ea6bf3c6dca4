"""Pydantic models for the balance sync engine.

This module defines the ledger records (Account, Transaction), the change notification consumed by the event reactor, the manual trigger payloads, and the result models returned by recomputation and sweeps. Wire payloads use camelCase aliases and also accept snake_case names.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from balance_sync.core.utils import as_utc


class Direction(str, Enum):
    """Which way money moves for a transaction."""

    IN = "in"
    OUT = "out"


class TransactionStatus(str, Enum):
    """Settlement status of a transaction."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ChangeType(str, Enum):
    """Kind of mutation reported by a change notification."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class WireModel(BaseModel):
    """Base model for payloads exchanged with the surrounding application."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def parse_amount(value: Any) -> Decimal:
    """Parse a wire amount into a finite Decimal, raising ValueError otherwise."""
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        msg = f"Invalid amount: {value!r}"
        raise ValueError(msg) from exc
    if not amount.is_finite():
        msg = f"Amount must be finite, got {value!r}"
        raise ValueError(msg)
    return amount


def normalize_amount(data: Any, amount_key: str, direction_key: str) -> Any:
    """Convert a signed amount into magnitude plus direction.

    Legacy records carry a signed amount and no direction. When a direction is
    present it wins and only the magnitude of the amount is kept.
    """
    if not isinstance(data, dict):
        return data
    amount = data.get(amount_key)
    if amount is None:
        return data
    data = dict(data)
    signed = parse_amount(amount)
    if data.get(direction_key) is None:
        data[direction_key] = Direction.OUT if signed < 0 else Direction.IN
    data[amount_key] = abs(signed)
    return data


def signed_contribution(amount: Decimal, direction: Direction) -> Decimal:
    """Return the signed balance contribution of an amount moving in a direction."""
    return amount if direction == Direction.IN else -amount


class Transaction(WireModel):
    """A ledger transaction as seen by the engine."""

    id: str
    user_id: str
    account_id: str | None = None
    credit_card_id: str | None = None
    amount: Decimal = Field(ge=0)
    direction: Direction
    date: datetime
    status: TransactionStatus = TransactionStatus.PENDING

    @model_validator(mode="before")
    @classmethod
    def _normalize_amount(cls, data: Any) -> Any:
        return normalize_amount(data, "amount", "direction")

    @field_validator("date")
    @classmethod
    def _date_as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def signed_amount(self) -> Decimal:
        """Signed contribution of this transaction to its account balance."""
        return signed_contribution(self.amount, self.direction)

    def is_eligible(self, cutoff: datetime) -> bool:
        """Whether the transaction counts towards an account balance at ``cutoff``."""
        return self.account_id is not None and self.credit_card_id is None and self.date <= cutoff


class Account(WireModel):
    """An account with its cached balance."""

    id: str
    user_id: str
    name: str = ""
    balance: Decimal = Decimal("0")
    synced_transaction_ids: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None


class AccountPatch(BaseModel):
    """Fields the engine writes back to an account after recomputation."""

    balance: Decimal
    synced_transaction_ids: list[str]
    updated_at: datetime


class TransactionPage(BaseModel):
    """One page of transactions and the cursor for the next page."""

    items: list[Transaction]
    next_cursor: str | None = None


class AccountPage(BaseModel):
    """One page of accounts and the cursor for the next page."""

    items: list[Account]
    next_cursor: str | None = None


class TransactionChange(WireModel):
    """Change notification for a transaction mutation.

    The ``previous_*`` fields describe the transaction before an update or
    delete. When absent they default to the current values.
    """

    transaction_id: str
    user_id: str | None = None
    account_id: str | None = None
    credit_card_id: str | None = None
    amount: Decimal = Field(ge=0)
    direction: Direction
    date: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    change_type: ChangeType
    previous_amount: Decimal | None = None
    previous_direction: Direction | None = None
    previous_account_id: str | None = None
    previous_credit_card_id: str | None = None
    previous_status: TransactionStatus | None = None
    previous_date: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_amounts(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        signed_mode = data.get("direction") is None
        data = normalize_amount(data, "amount", "direction")
        for amount_key, direction_key in (
            ("previousAmount", "previousDirection"),
            ("previous_amount", "previous_direction"),
        ):
            if signed_mode:
                data = normalize_amount(data, amount_key, direction_key)
            elif data.get(amount_key) is not None:
                data = dict(data)
                data[amount_key] = abs(parse_amount(data[amount_key]))
        return data

    @field_validator("date", "previous_date")
    @classmethod
    def _dates_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def _previous_or_current(self, name: str) -> Any:
        if f"previous_{name}" in self.model_fields_set:
            previous = getattr(self, f"previous_{name}")
            # an explicit null only carries meaning for the nullable links
            if previous is not None or name in ("account_id", "credit_card_id"):
                return previous
        return getattr(self, name)

    def current(self) -> Transaction:
        """Return the transaction as it is after the change."""
        return Transaction(
            id=self.transaction_id,
            user_id=self.user_id or "",
            account_id=self.account_id,
            credit_card_id=self.credit_card_id,
            amount=self.amount,
            direction=self.direction,
            date=self.date,
            status=self.status,
        )

    def previous(self) -> Transaction:
        """Return the transaction as it was before the change."""
        return Transaction(
            id=self.transaction_id,
            user_id=self.user_id or "",
            account_id=self._previous_or_current("account_id"),
            credit_card_id=self._previous_or_current("credit_card_id"),
            amount=self._previous_or_current("amount"),
            direction=self._previous_or_current("direction"),
            date=self._previous_or_current("date"),
            status=self._previous_or_current("status"),
        )


class ManualSyncRequest(WireModel):
    """Operator-initiated recomputation for a user or a single account."""

    user_id: str | None = None
    account_id: str | None = None
    reprocess_all: bool = False


class SyncResponse(WireModel):
    """Outcome of a manual recomputation."""

    success: bool
    balance: Decimal | None = None
    accounts_processed: int | None = None
    message: str | None = None
    error: str | None = None


class RecomputeResult(WireModel):
    """Outcome of one full balance recomputation."""

    account_id: str
    previous_balance: Decimal
    balance: Decimal
    transactions_folded: int
    skipped_future: int = 0
    skipped_credit_card: int = 0
    settled: int = 0
    changed: bool
    updated_at: datetime | None = None


class DeltaResult(WireModel):
    """Outcome of one incremental balance update."""

    account_id: str
    delta: Decimal
    balance: Decimal | None = None
    applied: bool
    reason: str | None = None


class ReactionResult(WireModel):
    """What the event reactor did with a notification."""

    success: bool = True
    transaction_id: str
    change_type: ChangeType
    accounts: list[str] = Field(default_factory=list)
    deferred: bool = False
    recomputed: list[RecomputeResult] = Field(default_factory=list)
    deltas: list[DeltaResult] = Field(default_factory=list)
    failed_account_ids: list[str] = Field(default_factory=list)
    timed_out_account_ids: list[str] = Field(default_factory=list)


class SweepReport(WireModel):
    """Summary of one sweep.

    ``as_of`` is the instant due transactions were evaluated against, which a
    backfilled run sets in the past. ``started_at`` and ``finished_at`` are
    wall-clock times of the run itself.
    """

    started_at: datetime
    finished_at: datetime | None = None
    as_of: datetime | None = None
    users_processed: int = 0
    users_failed: int = 0
    accounts_processed: int = 0
    accounts_failed: int = 0
    failed_account_ids: list[str] = Field(default_factory=list)
