"""Incremental balance updates for transaction mutations.

The delta applier adjusts the cached balance by the change a single transaction causes instead of rebuilding it. It treats a transaction as already applied exactly when its status is ``completed``, so it re-reads that status under the account lock before crediting a create and uses the store's atomic increment for every write.
"""

from datetime import datetime
from decimal import Decimal

from balance_sync.core.models import (
    ChangeType,
    DeltaResult,
    Transaction,
    TransactionChange,
    TransactionStatus,
)
from balance_sync.core.settings import Settings
from balance_sync.core.utils import as_utc, end_of_day, get_logger, utcnow
from balance_sync.services.ledger_store import AccountNotFoundError, LedgerStore
from balance_sync.services.locks import AccountLocks

logger = get_logger("balance-sync.delta")

UNSETTLED = frozenset({TransactionStatus.PENDING, TransactionStatus.FAILED})


class DeltaApplier:
    """Applies signed transaction deltas to cached account balances."""

    def __init__(self, store: LedgerStore, locks: AccountLocks, settings: Settings) -> None:
        """Initialize the applier with a ledger store, the lock registry and settings."""
        self.store = store
        self.locks = locks
        self.settings = settings

    def apply(self, change: TransactionChange, now: datetime | None = None) -> list[DeltaResult]:
        """Apply the balance effect of a change notification."""
        cutoff = end_of_day(as_utc(now or utcnow()), self.settings.ledger_timezone)
        if change.change_type == ChangeType.CREATE:
            return [self._apply_create(change.current(), cutoff)]
        if change.change_type == ChangeType.DELETE:
            return [self._apply_delete(change.previous())]
        return self._apply_update(change.current(), change.previous(), cutoff)

    def settle_due(self, account_id: str, now: datetime | None = None) -> list[DeltaResult]:
        """Credit every due, eligible and unsettled transaction of an account."""
        cutoff = end_of_day(as_utc(now or utcnow()), self.settings.ledger_timezone)
        results = []
        with self.locks.hold(account_id):
            for txn in self.store.iter_transactions_for_account(account_id, page_size=self.settings.transaction_page_size):
                if txn.status in UNSETTLED and txn.is_eligible(cutoff):
                    results.append(self._credit(txn))
        logger.info(f"Settled {len(results)} due transactions on account {account_id}")
        return results

    def _apply_create(self, txn: Transaction, cutoff: datetime) -> DeltaResult:
        account_id = txn.account_id or ""
        if not txn.is_eligible(cutoff):
            return self._skipped(account_id, "not eligible")
        with self.locks.hold(account_id):
            stored = self.store.get_transaction(txn.id)
            status = stored.status if stored else txn.status
            if status not in UNSETTLED:
                logger.info(f"Transaction {txn.id} already {status.value}, skipping")
                return self._skipped(account_id, f"status {status.value}")
            return self._credit(txn)

    def _apply_delete(self, previous: Transaction) -> DeltaResult:
        account_id = previous.account_id or ""
        if previous.account_id is None or previous.credit_card_id is not None:
            return self._skipped(account_id, "not eligible")
        if previous.status != TransactionStatus.COMPLETED:
            return self._skipped(account_id, "never applied")
        with self.locks.hold(account_id):
            return self._increment(account_id, -previous.signed_amount, previous.id)

    def _apply_update(self, current: Transaction, previous: Transaction, cutoff: datetime) -> list[DeltaResult]:
        was_applied = (
            previous.status == TransactionStatus.COMPLETED
            and previous.account_id is not None
            and previous.credit_card_id is None
        )
        applies_now = current.is_eligible(cutoff) and (was_applied or current.status in UNSETTLED)
        old_part = previous.signed_amount if was_applied else Decimal("0")
        new_part = current.signed_amount if applies_now else Decimal("0")

        if was_applied and previous.account_id != current.account_id:
            results = [self._locked_increment(previous.account_id, -old_part, previous.id)]
            if applies_now:
                results.append(self._locked_increment(current.account_id, new_part, current.id))
            else:
                results.append(self._skipped(current.account_id or "", "not eligible"))
            self._restatus(current, applies_now)
            return results

        account_id = current.account_id or previous.account_id or ""
        if not account_id or (not was_applied and not applies_now):
            return [self._skipped(account_id, "not eligible")]
        logger.info(f"Transaction {current.id} updated: old {old_part}, new {new_part}, difference {new_part - old_part}")
        result = self._locked_increment(account_id, new_part - old_part, current.id)
        self._restatus(current, applies_now)
        return [result]

    def _restatus(self, txn: Transaction, applied: bool) -> None:
        status = TransactionStatus.COMPLETED if applied else TransactionStatus.PENDING
        if txn.status != status:
            self.store.set_transaction_status([txn.id], status)

    def _credit(self, txn: Transaction) -> DeltaResult:
        result = self._increment(txn.account_id or "", txn.signed_amount, txn.id)
        if result.applied:
            self.store.set_transaction_status([txn.id], TransactionStatus.COMPLETED)
        return result

    def _locked_increment(self, account_id: str, delta: Decimal, transaction_id: str) -> DeltaResult:
        with self.locks.hold(account_id):
            return self._increment(account_id, delta, transaction_id)

    def _increment(self, account_id: str, delta: Decimal, transaction_id: str) -> DeltaResult:
        try:
            balance = self.store.increment_balance(account_id, delta)
        except AccountNotFoundError:
            logger.info(f"Account {account_id} not found, skipping transaction {transaction_id}")
            return self._skipped(account_id, "account not found")
        logger.info(f"Applied {delta} to account {account_id} for transaction {transaction_id}, new balance {balance}")
        return DeltaResult(account_id=account_id, delta=delta, balance=balance, applied=True)

    @staticmethod
    def _skipped(account_id: str, reason: str) -> DeltaResult:
        return DeltaResult(account_id=account_id, delta=Decimal("0"), applied=False, reason=reason)
