"""Full balance recomputation for a single account.

The recomputer folds every eligible transaction of an account into a fresh balance and writes it back in one step. It never reads the cached balance to derive the new one, which makes it idempotent and safe to call from any number of triggers.
"""

from datetime import datetime
from decimal import Decimal

from balance_sync.core.models import AccountPatch, RecomputeResult, TransactionStatus
from balance_sync.core.settings import Settings
from balance_sync.core.utils import as_utc, end_of_day, get_logger, utcnow
from balance_sync.services.ledger_store import AccountNotFoundError, LedgerStore
from balance_sync.services.locks import AccountLocks

logger = get_logger("balance-sync.recompute")


class BalanceRecomputer:
    """Rebuilds cached account balances from the ledger."""

    def __init__(self, store: LedgerStore, locks: AccountLocks, settings: Settings) -> None:
        """Initialize the recomputer with a ledger store, the lock registry and settings."""
        self.store = store
        self.locks = locks
        self.settings = settings

    def recompute(self, account_id: str, now: datetime | None = None) -> RecomputeResult | None:
        """Recompute and store the balance of an account.

        Returns None when the account does not exist, which is not an error:
        the notification that asked for it simply no longer applies.
        """
        now = as_utc(now or utcnow())
        cutoff = end_of_day(now, self.settings.ledger_timezone)
        with self.locks.hold(account_id):
            try:
                return self._recompute_locked(account_id, now, cutoff)
            except AccountNotFoundError:
                logger.info(f"Account {account_id} disappeared during recomputation, skipping")
                return None
            except Exception:
                logger.exception(f"Error recomputing balance for account {account_id}")
                raise

    def _recompute_locked(self, account_id: str, now: datetime, cutoff: datetime) -> RecomputeResult | None:
        account = self.store.get_account(account_id)
        if account is None:
            logger.info(f"Account {account_id} not found, nothing to recompute")
            return None

        balance = Decimal("0")
        folded: list[str] = []
        to_settle: list[str] = []
        skipped_future = skipped_credit_card = 0
        for txn in self.store.iter_transactions_for_account(account_id, page_size=self.settings.transaction_page_size):
            if txn.credit_card_id:
                skipped_credit_card += 1
                continue
            if txn.date > cutoff:
                skipped_future += 1
                continue
            balance += txn.signed_amount
            folded.append(txn.id)
            if txn.status != TransactionStatus.COMPLETED:
                to_settle.append(txn.id)

        changed = balance != account.balance or folded != account.synced_transaction_ids
        updated_at = account.updated_at
        if changed:
            updated_at = now
            self.store.update_account(
                account_id,
                AccountPatch(balance=balance, synced_transaction_ids=folded, updated_at=updated_at),
            )
        settled = 0
        if self.settings.settle_on_recompute and to_settle:
            settled = self.store.set_transaction_status(to_settle, TransactionStatus.COMPLETED)

        logger.info(
            f"Recomputed account {account_id}: balance {account.balance} -> {balance}, "
            f"folded={len(folded)} future={skipped_future} credit_card={skipped_credit_card} "
            f"settled={settled} changed={changed}"
        )
        return RecomputeResult(
            account_id=account_id,
            previous_balance=account.balance,
            balance=balance,
            transactions_folded=len(folded),
            skipped_future=skipped_future,
            skipped_credit_card=skipped_credit_card,
            settled=settled,
            changed=changed,
            updated_at=updated_at,
        )
