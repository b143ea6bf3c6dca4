"""Services package: ledger store adapter, per-account locks, full recomputation and incremental deltas."""

from .delta import DeltaApplier  # noqa: F401
from .ledger_store import AccountNotFoundError, LedgerStore, LedgerStoreError, SqlLedgerStore  # noqa: F401
from .locks import AccountLocks  # noqa: F401
from .recompute import BalanceRecomputer  # noqa: F401
