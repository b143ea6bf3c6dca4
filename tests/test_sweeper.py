"""Tests for the due-transaction sweeper."""

import time
from collections.abc import Callable
from datetime import timedelta
from decimal import Decimal

import pytest

from balance_sync.core.models import Direction, RecomputeResult
from balance_sync.core.settings import Settings
from balance_sync.services.ledger_store import LedgerStoreError, SqlLedgerStore
from balance_sync.services.recompute import BalanceRecomputer
from balance_sync.workers.sweeper import DueTransactionSweeper

from tests.conftest import IN_TEN_DAYS, NOW


def test_scenario_future_income_becomes_due(
    sweeper: DueTransactionSweeper,
    recomputer: BalanceRecomputer,
    store: SqlLedgerStore,
    add_account: Callable,
    add_txn: Callable,
) -> None:
    """Ten days later, with no mutation in between, the sweep picks up the income."""
    add_account("acc-1")
    add_txn("t-income", "acc-1", "100")
    add_txn("t-expense", "acc-1", "30", Direction.OUT)
    add_txn("t-future", "acc-1", "1000", date=IN_TEN_DAYS)
    recomputer.recompute("acc-1", now=NOW)
    if store.get_account("acc-1").balance != Decimal("70"):
        msg = "Expected 70 before the sweep"
        raise AssertionError(msg)

    report = sweeper.run(now=NOW + timedelta(days=10))
    if store.get_account("acc-1").balance != Decimal("1070") or report.accounts_processed != 1:
        msg = f"Expected 1070 after the sweep, got {report!r}"
        raise AssertionError(msg)

    add_txn("t-card", "acc-1", "50", Direction.OUT, credit_card_id="cc1")
    sweeper.run(now=NOW + timedelta(days=10))
    if store.get_account("acc-1").balance != Decimal("1070"):
        msg = "Credit card transaction must not change the balance"
        raise AssertionError(msg)


def test_sweep_visits_every_user_across_pages(
    sweeper: DueTransactionSweeper, store: SqlLedgerStore, add_account: Callable, add_txn: Callable
) -> None:
    """Users are enumerated through every page of accounts, each once."""
    for idx in range(5):
        user_id = f"user-{idx}"
        add_account(f"acc-{idx}a", user_id=user_id)
        add_account(f"acc-{idx}b", user_id=user_id)
        add_txn(f"t-{idx}", f"acc-{idx}a", str(10 * (idx + 1)), user_id=user_id)
    report = sweeper.run(now=NOW)
    if report.users_processed != 5 or report.accounts_processed != 5:
        msg = f"Expected 5 users and 5 accounts, got {report!r}"
        raise AssertionError(msg)
    if store.get_account("acc-4a").balance != Decimal("50") or store.get_account("acc-4b").updated_at is not None:
        msg = "Only accounts with due transactions should be recomputed"
        raise AssertionError(msg)


def test_failing_account_does_not_stop_the_sweep(
    store: SqlLedgerStore,
    recomputer: BalanceRecomputer,
    sweeper: DueTransactionSweeper,
    add_account: Callable,
    add_txn: Callable,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failure on one account is logged and the next one still completes."""
    add_account("acc-a")
    add_account("acc-b")
    add_txn("t-a", "acc-a", "10")
    add_txn("t-b", "acc-b", "20")
    original = recomputer.recompute

    def flaky(account_id: str, now: object = None) -> RecomputeResult | None:
        if account_id == "acc-a":
            msg = "write failed"
            raise LedgerStoreError(msg)
        return original(account_id, now=now)

    monkeypatch.setattr(recomputer, "recompute", flaky)
    report = sweeper.run(now=NOW)
    if report.failed_account_ids != ["acc-a"] or report.accounts_processed != 1:
        msg = f"Expected only acc-a to fail, got {report!r}"
        raise AssertionError(msg)
    if store.get_account("acc-b").balance != Decimal("20"):
        msg = "acc-b should still be recomputed"
        raise AssertionError(msg)


def test_failing_user_does_not_stop_the_sweep(
    store: SqlLedgerStore,
    sweeper: DueTransactionSweeper,
    add_account: Callable,
    add_txn: Callable,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failure while listing one user's transactions is isolated too."""
    add_account("acc-1", user_id="user-1")
    add_account("acc-2", user_id="user-2")
    add_txn("t-2", "acc-2", "20", user_id="user-2")
    original = store.list_due_transactions_for_user

    def flaky(user_id: str, *args: object, **kwargs: object) -> object:
        if user_id == "user-1":
            msg = "timeout"
            raise LedgerStoreError(msg)
        return original(user_id, *args, **kwargs)

    monkeypatch.setattr(store, "list_due_transactions_for_user", flaky)
    report = sweeper.run(now=NOW)
    if report.users_failed != 1 or report.users_processed != 1:
        msg = f"Expected one failed and one processed user, got {report!r}"
        raise AssertionError(msg)
    if store.get_account("acc-2").balance != Decimal("20"):
        msg = "user-2 should still be swept"
        raise AssertionError(msg)


def test_only_unsynced_skips_accounts_already_covering_due_ids(
    store: SqlLedgerStore,
    recomputer: BalanceRecomputer,
    delta_applier: object,
    settings: Settings,
    add_account: Callable,
    add_txn: Callable,
) -> None:
    """The optional optimization leaves accounts whose synced ids cover every due transaction."""
    add_account("acc-1")
    add_txn("t1", "acc-1", "10")
    recomputer.recompute("acc-1", now=NOW)
    add_account("acc-2")
    add_txn("t2", "acc-2", "10")
    sweeper = DueTransactionSweeper(
        store, recomputer, delta_applier, settings.model_copy(update={"sweep_only_unsynced": True})
    )
    if sweeper.due_accounts("user-1", NOW) != ["acc-2"]:
        msg = f"Expected only acc-2, got {sweeper.due_accounts('user-1', NOW)}"
        raise AssertionError(msg)


def test_reprocess_user_recomputes_every_account(
    sweeper: DueTransactionSweeper, store: SqlLedgerStore, add_account: Callable, add_txn: Callable
) -> None:
    """Reprocessing touches all of the user's accounts and heals drift."""
    add_account("acc-1", balance="999")
    add_account("acc-2", balance="5")
    add_txn("t1", "acc-1", "10")
    report = sweeper.reprocess_user("user-1", now=NOW)
    if report.accounts_processed != 2:
        msg = f"Expected both accounts reprocessed, got {report!r}"
        raise AssertionError(msg)
    if store.get_account("acc-1").balance != Decimal("10") or store.get_account("acc-2").balance != Decimal("0"):
        msg = "Expected balances rebuilt from the ledger"
        raise AssertionError(msg)


def test_delta_strategy_settles_due_transactions(
    store: SqlLedgerStore,
    recomputer: BalanceRecomputer,
    delta_applier: object,
    settings: Settings,
    add_account: Callable,
    add_txn: Callable,
) -> None:
    """In delta mode the sweep credits newly due transactions instead of rebuilding."""
    add_account("acc-1", balance="70")
    add_txn("t-future", "acc-1", "1000", date=IN_TEN_DAYS)
    sweeper = DueTransactionSweeper(
        store, recomputer, delta_applier, settings.model_copy(update={"reconcile_strategy": "delta"})
    )
    sweeper.run(now=NOW + timedelta(days=10))
    if store.get_account("acc-1").balance != Decimal("1070"):
        msg = f"Expected 1070, got {store.get_account('acc-1').balance}"
        raise AssertionError(msg)


def test_reprocess_all_heals_accounts_without_due_transactions(
    sweeper: DueTransactionSweeper, store: SqlLedgerStore, add_account: Callable, add_txn: Callable
) -> None:
    """A stale balance on an account with no transactions left is rebuilt by the global pass."""
    add_account("acc-1", balance="100")
    add_account("acc-2", user_id="user-2", balance="5")
    add_account("acc-3", user_id="user-3")
    add_txn("t3", "acc-3", "40", user_id="user-3")
    if sweeper.run(now=NOW).accounts_processed != 1 or store.get_account("acc-1").balance != Decimal("100"):
        msg = "The due sweep alone should not touch accounts without due transactions"
        raise AssertionError(msg)

    report = sweeper.reprocess_all(now=NOW)
    if report.accounts_processed != 3 or report.users_processed != 3:
        msg = f"Expected three accounts of three users, got {report!r}"
        raise AssertionError(msg)
    balances = [store.get_account(account_id).balance for account_id in ("acc-1", "acc-2", "acc-3")]
    if balances != [Decimal("0"), Decimal("0"), Decimal("40")]:
        msg = f"Expected balances rebuilt from the ledger, got {balances}"
        raise AssertionError(msg)


def test_report_times_come_from_one_clock(
    store: SqlLedgerStore,
    recomputer: BalanceRecomputer,
    delta_applier: object,
    settings: Settings,
    add_account: Callable,
    add_txn: Callable,
) -> None:
    """A backfilled run records its evaluation instant apart from when it started and finished."""
    ticks = iter([NOW + timedelta(days=400), NOW + timedelta(days=400, seconds=3)])
    sweeper = DueTransactionSweeper(store, recomputer, delta_applier, settings, clock=lambda: next(ticks))
    add_account("acc-1")
    add_txn("t1", "acc-1", "10")
    report = sweeper.run(now=NOW)
    if report.as_of != NOW or report.finished_at < report.started_at:
        msg = f"Expected as_of {NOW} and finished after started, got {report!r}"
        raise AssertionError(msg)


def test_slow_account_times_out_without_stopping_the_sweep(
    store: SqlLedgerStore,
    recomputer: BalanceRecomputer,
    delta_applier: object,
    settings: Settings,
    add_account: Callable,
    add_txn: Callable,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Each account reconciliation is bounded, and a slow one counts as a failure."""
    add_account("acc-a")
    add_account("acc-b")
    add_txn("t-a", "acc-a", "10")
    add_txn("t-b", "acc-b", "20")
    original = recomputer.recompute

    def slow(account_id: str, now: object = None) -> RecomputeResult | None:
        if account_id == "acc-a":
            time.sleep(0.5)
            return None
        return original(account_id, now=now)

    monkeypatch.setattr(recomputer, "recompute", slow)
    sweeper = DueTransactionSweeper(
        store, recomputer, delta_applier, settings.model_copy(update={"invocation_timeout_seconds": 0.05})
    )
    report = sweeper.run(now=NOW)
    if report.failed_account_ids != ["acc-a"] or store.get_account("acc-b").balance != Decimal("20"):
        msg = f"Expected only acc-a to time out, got {report!r}"
        raise AssertionError(msg)
