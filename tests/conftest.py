"""Shared fixtures: an in-memory ledger store, engine services and a fixed clock."""

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from balance_sync.core.db import create_ledger_engine, init_db
from balance_sync.core.models import Account, Direction, Transaction, TransactionStatus
from balance_sync.core.settings import Settings
from balance_sync.services.delta import DeltaApplier
from balance_sync.services.ledger_store import SqlLedgerStore
from balance_sync.services.locks import AccountLocks
from balance_sync.services.recompute import BalanceRecomputer
from balance_sync.workers.sweeper import DueTransactionSweeper

NOW = datetime(2025, 11, 10, 15, 0, tzinfo=UTC)
YESTERDAY = NOW - timedelta(days=1)
IN_TEN_DAYS = NOW + timedelta(days=10)


@pytest.fixture
def settings() -> Settings:
    """Settings with tiny page sizes so that pagination is exercised."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        ledger_timezone="UTC",
        transaction_page_size=2,
        sweep_page_size=2,
        sweep_workers=1,
        scheduler_enabled=False,
        invocation_timeout_seconds=10,
    )


@pytest.fixture
def store() -> Iterator[SqlLedgerStore]:
    """A ledger store on a fresh in-memory SQLite database."""
    engine = create_ledger_engine("sqlite://")
    init_db(engine)
    yield SqlLedgerStore(sessionmaker(bind=engine, expire_on_commit=False))
    engine.dispose()


@pytest.fixture
def locks() -> AccountLocks:
    """A fresh per-account lock registry."""
    return AccountLocks()


@pytest.fixture
def recomputer(store: SqlLedgerStore, locks: AccountLocks, settings: Settings) -> BalanceRecomputer:
    """A recomputer over the test store."""
    return BalanceRecomputer(store, locks, settings)


@pytest.fixture
def delta_applier(store: SqlLedgerStore, locks: AccountLocks, settings: Settings) -> DeltaApplier:
    """A delta applier over the test store."""
    return DeltaApplier(store, locks, settings)


@pytest.fixture
def sweeper(
    store: SqlLedgerStore, recomputer: BalanceRecomputer, delta_applier: DeltaApplier, settings: Settings
) -> DueTransactionSweeper:
    """A sweeper over the test store."""
    return DueTransactionSweeper(store, recomputer, delta_applier, settings)


@pytest.fixture
def add_account(store: SqlLedgerStore) -> Callable[..., Account]:
    """Insert an account with a zero balance."""

    def _add(account_id: str, user_id: str = "user-1", balance: str = "0") -> Account:
        return store.add_account(Account(id=account_id, user_id=user_id, name=account_id, balance=Decimal(balance)))

    return _add


@pytest.fixture
def add_txn(store: SqlLedgerStore) -> Callable[..., Transaction]:
    """Insert a transaction dated yesterday unless told otherwise."""

    def _add(
        txn_id: str,
        account_id: str | None,
        amount: str,
        direction: Direction = Direction.IN,
        date: datetime = YESTERDAY,
        user_id: str = "user-1",
        credit_card_id: str | None = None,
        status: TransactionStatus = TransactionStatus.PENDING,
    ) -> Transaction:
        return store.add_transaction(
            Transaction(
                id=txn_id,
                user_id=user_id,
                account_id=account_id,
                credit_card_id=credit_card_id,
                amount=Decimal(amount),
                direction=direction,
                date=date,
                status=status,
            )
        )

    return _add
