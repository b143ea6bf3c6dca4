"""FastAPI dependencies for DI (settings, ledger store, reconciliation services).

Services are cheap to build per request. The lock registry and the debouncer are shared by the whole process so that every request serializes on the same per-account locks and coalesces into the same pending recomputations.
"""

from functools import lru_cache

from fastapi import Depends

from balance_sync.core.db import SessionLocal
from balance_sync.core.settings import Settings, get_settings
from balance_sync.services.delta import DeltaApplier
from balance_sync.services.ledger_store import LedgerStore, SqlLedgerStore
from balance_sync.services.locks import AccountLocks
from balance_sync.services.recompute import BalanceRecomputer
from balance_sync.workers.debounce import Debouncer
from balance_sync.workers.reactor import EventReactor
from balance_sync.workers.sweeper import DueTransactionSweeper


@lru_cache
def get_locks() -> AccountLocks:
    """Provide the process-wide per-account lock registry."""
    return AccountLocks()


def get_store() -> LedgerStore:
    """Provide a ledger store bound to the configured database."""
    return SqlLedgerStore(SessionLocal)


def get_recomputer(store: LedgerStore = Depends(get_store), settings: Settings = Depends(get_settings)) -> BalanceRecomputer:
    """Provide a BalanceRecomputer instance for dependency injection."""
    return BalanceRecomputer(store, get_locks(), settings)


def get_delta_applier(store: LedgerStore = Depends(get_store), settings: Settings = Depends(get_settings)) -> DeltaApplier:
    """Provide a DeltaApplier instance for dependency injection."""
    return DeltaApplier(store, get_locks(), settings)


def _recompute_deferred(account_id: str) -> None:
    BalanceRecomputer(get_store(), get_locks(), get_settings()).recompute(account_id)


@lru_cache
def shared_debouncer(window_seconds: float) -> Debouncer:
    """Return the process-wide debouncer for a coalescing window."""
    return Debouncer(window_seconds, _recompute_deferred)


def get_debouncer(settings: Settings = Depends(get_settings)) -> Debouncer | None:
    """Provide the shared debouncer, or None when coalescing is disabled."""
    if settings.debounce_seconds <= 0:
        return None
    return shared_debouncer(settings.debounce_seconds)


def get_reactor(
    recomputer: BalanceRecomputer = Depends(get_recomputer),
    delta_applier: DeltaApplier = Depends(get_delta_applier),
    settings: Settings = Depends(get_settings),
    debouncer: Debouncer | None = Depends(get_debouncer),
) -> EventReactor:
    """Provide an EventReactor instance for dependency injection."""
    return EventReactor(recomputer, delta_applier, settings, debouncer)


def get_sweeper(
    store: LedgerStore = Depends(get_store),
    recomputer: BalanceRecomputer = Depends(get_recomputer),
    delta_applier: DeltaApplier = Depends(get_delta_applier),
    settings: Settings = Depends(get_settings),
) -> DueTransactionSweeper:
    """Provide a DueTransactionSweeper instance for dependency injection."""
    return DueTransactionSweeper(store, recomputer, delta_applier, settings)


def build_sweeper() -> DueTransactionSweeper:
    """Build a sweeper outside of a request, for the scheduler."""
    settings = get_settings()
    store = get_store()
    locks = get_locks()
    return DueTransactionSweeper(
        store, BalanceRecomputer(store, locks, settings), DeltaApplier(store, locks, settings), settings
    )
