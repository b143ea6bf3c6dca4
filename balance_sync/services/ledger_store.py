"""Ledger store adapter: paginated access to the account and transaction collections.

`LedgerStore` is the abstract interface the engine talks to; `SqlLedgerStore` implements it on SQLAlchemy. The store holds no logic, does no retries and no caching. Database failures are wrapped in `LedgerStoreError` and propagate to the caller.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from balance_sync.core.db import AccountRow, TransactionRow
from balance_sync.core.models import (
    Account,
    AccountPage,
    AccountPatch,
    Transaction,
    TransactionPage,
    TransactionStatus,
)

TRANSACTION_PAGE_SIZE = 500
ACCOUNT_PAGE_SIZE = 100


class LedgerStoreError(Exception):
    """Base exception for ledger store operations."""


class AccountNotFoundError(LedgerStoreError):
    """The account does not exist (anymore)."""


class LedgerStore(ABC):
    """Abstract interface for the ledger store."""

    @abstractmethod
    def list_transactions_for_account(
        self, account_id: str, cursor: str | None = None, limit: int = TRANSACTION_PAGE_SIZE
    ) -> TransactionPage:
        """Return one page of an account's transactions ordered by id, starting after ``cursor``."""

    @abstractmethod
    def list_due_transactions_for_user(
        self, user_id: str, cutoff: datetime, cursor: str | None = None, limit: int = TRANSACTION_PAGE_SIZE
    ) -> TransactionPage:
        """Return one page of a user's account-linked, non credit card transactions dated on or before ``cutoff``."""

    @abstractmethod
    def list_accounts(self, cursor: str | None = None, limit: int = ACCOUNT_PAGE_SIZE) -> AccountPage:
        """Return one page of accounts ordered by id, starting after ``cursor``."""

    @abstractmethod
    def list_accounts_for_user(self, user_id: str) -> list[Account]:
        """Return every account owned by a user."""

    @abstractmethod
    def get_account(self, account_id: str) -> Account | None:
        """Return an account by id, or None if it does not exist."""

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Transaction | None:
        """Return a transaction by id, or None if it does not exist."""

    @abstractmethod
    def update_account(self, account_id: str, patch: AccountPatch) -> None:
        """Overwrite the engine-owned fields of an account.

        Raises:
            AccountNotFoundError: If the account does not exist.
        """

    @abstractmethod
    def increment_balance(self, account_id: str, delta: Decimal) -> Decimal:
        """Atomically add ``delta`` to an account balance and return the new balance.

        Raises:
            AccountNotFoundError: If the account does not exist.
        """

    @abstractmethod
    def set_transaction_status(self, transaction_ids: Iterable[str], status: TransactionStatus) -> int:
        """Set the status of the given transactions and return how many rows changed."""

    @abstractmethod
    def add_account(self, account: Account) -> Account:
        """Insert an account."""

    @abstractmethod
    def add_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a transaction."""

    @abstractmethod
    def update_transaction(self, transaction: Transaction) -> Transaction:
        """Replace a stored transaction with the given version."""

    @abstractmethod
    def delete_transaction(self, transaction_id: str) -> Transaction | None:
        """Delete a transaction and return its last stored version."""

    def iter_transactions_for_account(self, account_id: str, page_size: int = TRANSACTION_PAGE_SIZE) -> Iterator[Transaction]:
        """Stream every transaction of an account, one page at a time."""
        cursor = None
        while True:
            page = self.list_transactions_for_account(account_id, cursor=cursor, limit=page_size)
            yield from page.items
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def iter_due_transactions_for_user(
        self, user_id: str, cutoff: datetime, page_size: int = TRANSACTION_PAGE_SIZE
    ) -> Iterator[Transaction]:
        """Stream every due transaction of a user, one page at a time."""
        cursor = None
        while True:
            page = self.list_due_transactions_for_user(user_id, cutoff, cursor=cursor, limit=page_size)
            yield from page.items
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def iter_account_pages(self, page_size: int = ACCOUNT_PAGE_SIZE) -> Iterator[AccountPage]:
        """Stream the accounts collection page by page."""
        cursor = None
        while True:
            page = self.list_accounts(cursor=cursor, limit=page_size)
            yield page
            if page.next_cursor is None:
                return
            cursor = page.next_cursor


def _to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        account_id=row.account_id,
        credit_card_id=row.credit_card_id,
        amount=row.amount,
        direction=row.direction,
        date=row.date,
        status=row.status,
    )


def _to_account(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        balance=row.balance,
        synced_transaction_ids=json.loads(row.synced_transaction_ids or "[]"),
        updated_at=row.updated_at,
    )


def _next_cursor(ids: list[str], limit: int) -> str | None:
    return ids[-1] if len(ids) == limit else None


class SqlLedgerStore(LedgerStore):
    """Ledger store backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize the store with a SQLAlchemy session factory."""
        self.Session = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            msg = f"Ledger store operation failed: {exc}"
            raise LedgerStoreError(msg) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list_transactions_for_account(
        self, account_id: str, cursor: str | None = None, limit: int = TRANSACTION_PAGE_SIZE
    ) -> TransactionPage:
        """Return one page of an account's transactions ordered by id, starting after ``cursor``."""
        stmt = select(TransactionRow).where(TransactionRow.account_id == account_id)
        if cursor is not None:
            stmt = stmt.where(TransactionRow.id > cursor)
        stmt = stmt.order_by(TransactionRow.id).limit(limit)
        with self._session() as session:
            rows = session.scalars(stmt).all()
            items = [_to_transaction(row) for row in rows]
        return TransactionPage(items=items, next_cursor=_next_cursor([t.id for t in items], limit))

    def list_due_transactions_for_user(
        self, user_id: str, cutoff: datetime, cursor: str | None = None, limit: int = TRANSACTION_PAGE_SIZE
    ) -> TransactionPage:
        """Return one page of a user's account-linked, non credit card transactions dated on or before ``cutoff``."""
        stmt = select(TransactionRow).where(
            TransactionRow.user_id == user_id,
            TransactionRow.date <= cutoff,
            TransactionRow.account_id.is_not(None),
            TransactionRow.credit_card_id.is_(None),
        )
        if cursor is not None:
            stmt = stmt.where(TransactionRow.id > cursor)
        stmt = stmt.order_by(TransactionRow.id).limit(limit)
        with self._session() as session:
            items = [_to_transaction(row) for row in session.scalars(stmt).all()]
        return TransactionPage(items=items, next_cursor=_next_cursor([t.id for t in items], limit))

    def list_accounts(self, cursor: str | None = None, limit: int = ACCOUNT_PAGE_SIZE) -> AccountPage:
        """Return one page of accounts ordered by id, starting after ``cursor``."""
        stmt = select(AccountRow)
        if cursor is not None:
            stmt = stmt.where(AccountRow.id > cursor)
        stmt = stmt.order_by(AccountRow.id).limit(limit)
        with self._session() as session:
            items = [_to_account(row) for row in session.scalars(stmt).all()]
        return AccountPage(items=items, next_cursor=_next_cursor([a.id for a in items], limit))

    def list_accounts_for_user(self, user_id: str) -> list[Account]:
        """Return every account owned by a user."""
        stmt = select(AccountRow).where(AccountRow.user_id == user_id).order_by(AccountRow.id)
        with self._session() as session:
            return [_to_account(row) for row in session.scalars(stmt).all()]

    def get_account(self, account_id: str) -> Account | None:
        """Return an account by id, or None if it does not exist."""
        with self._session() as session:
            row = session.get(AccountRow, account_id)
            return _to_account(row) if row else None

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        """Return a transaction by id, or None if it does not exist."""
        with self._session() as session:
            row = session.get(TransactionRow, transaction_id)
            return _to_transaction(row) if row else None

    def update_account(self, account_id: str, patch: AccountPatch) -> None:
        """Overwrite the engine-owned fields of an account."""
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == account_id)
            .values(
                balance=patch.balance,
                synced_transaction_ids=json.dumps(patch.synced_transaction_ids),
                updated_at=patch.updated_at,
            )
        )
        with self._session() as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                msg = f"Account {account_id} not found"
                raise AccountNotFoundError(msg)

    def increment_balance(self, account_id: str, delta: Decimal) -> Decimal:
        """Atomically add ``delta`` to an account balance and return the new balance."""
        stmt = update(AccountRow).where(AccountRow.id == account_id).values(balance=AccountRow.balance + delta)
        with self._session() as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                msg = f"Account {account_id} not found"
                raise AccountNotFoundError(msg)
            return session.scalar(select(AccountRow.balance).where(AccountRow.id == account_id))

    def set_transaction_status(self, transaction_ids: Iterable[str], status: TransactionStatus) -> int:
        """Set the status of the given transactions and return how many rows changed."""
        ids = list(transaction_ids)
        if not ids:
            return 0
        stmt = update(TransactionRow).where(TransactionRow.id.in_(ids)).values(status=status.value)
        with self._session() as session:
            return session.execute(stmt).rowcount

    def add_account(self, account: Account) -> Account:
        """Insert an account."""
        with self._session() as session:
            session.add(
                AccountRow(
                    id=account.id,
                    user_id=account.user_id,
                    name=account.name,
                    balance=account.balance,
                    synced_transaction_ids=json.dumps(account.synced_transaction_ids),
                    updated_at=account.updated_at,
                )
            )
        return account

    def add_transaction(self, transaction: Transaction) -> Transaction:
        """Insert a transaction."""
        with self._session() as session:
            session.add(TransactionRow(**_row_values(transaction)))
        return transaction

    def update_transaction(self, transaction: Transaction) -> Transaction:
        """Replace a stored transaction with the given version."""
        values = _row_values(transaction)
        values.pop("id")
        stmt = update(TransactionRow).where(TransactionRow.id == transaction.id).values(**values)
        with self._session() as session:
            if session.execute(stmt).rowcount == 0:
                msg = f"Transaction {transaction.id} not found"
                raise LedgerStoreError(msg)
        return transaction

    def delete_transaction(self, transaction_id: str) -> Transaction | None:
        """Delete a transaction and return its last stored version."""
        with self._session() as session:
            row = session.get(TransactionRow, transaction_id)
            if row is None:
                return None
            deleted = _to_transaction(row)
            session.delete(row)
        return deleted


def _row_values(transaction: Transaction) -> dict:
    return {
        "id": transaction.id,
        "user_id": transaction.user_id,
        "account_id": transaction.account_id,
        "credit_card_id": transaction.credit_card_id,
        "amount": transaction.amount,
        "direction": transaction.direction.value,
        "date": transaction.date,
        "status": transaction.status.value,
    }
