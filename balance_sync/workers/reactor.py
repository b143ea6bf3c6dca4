"""Event reactor: turns transaction change notifications into balance reconciliations."""

from datetime import datetime

from balance_sync.core.models import ChangeType, ReactionResult, Transaction, TransactionChange
from balance_sync.core.settings import Settings
from balance_sync.core.utils import get_logger
from balance_sync.services.delta import DeltaApplier
from balance_sync.services.ledger_store import LedgerStoreError
from balance_sync.services.recompute import BalanceRecomputer
from balance_sync.workers.debounce import Debouncer
from balance_sync.workers.invocation import InvocationTimeoutError, run_with_timeout

logger = get_logger("balance-sync.reactor")


def affected_accounts(change: TransactionChange) -> list[str]:
    """Accounts whose balance a change can alter, in the order they should be reconciled.

    An update that moves a transaction between accounts yields both the old and
    the new account.
    """

    def holder(txn: Transaction) -> str | None:
        if txn.account_id is None or txn.credit_card_id is not None:
            return None
        return txn.account_id

    if change.change_type == ChangeType.CREATE:
        candidates = [holder(change.current())]
    elif change.change_type == ChangeType.DELETE:
        candidates = [holder(change.previous())]
    else:
        candidates = [holder(change.previous()), holder(change.current())]
    return list(dict.fromkeys(account_id for account_id in candidates if account_id))


class EventReactor:
    """Dispatches change notifications to the configured reconciliation path."""

    def __init__(
        self,
        recomputer: BalanceRecomputer,
        delta_applier: DeltaApplier,
        settings: Settings,
        debouncer: Debouncer | None = None,
    ) -> None:
        """Initialize the reactor with both reconciliation paths, settings and an optional debouncer."""
        self.recomputer = recomputer
        self.delta_applier = delta_applier
        self.settings = settings
        self.debouncer = debouncer

    def handle(self, change: TransactionChange, now: datetime | None = None) -> ReactionResult:
        """React to one transaction change notification.

        Each affected account is reconciled on its own: a store failure or a
        timeout on one account is logged and reported in the result, and the
        remaining accounts are still reconciled.
        """
        accounts = affected_accounts(change)
        result = ReactionResult(transaction_id=change.transaction_id, change_type=change.change_type, accounts=accounts)
        logger.info(
            f"Transaction {change.transaction_id} {change.change_type.value}: "
            f"account={change.account_id} credit_card={change.credit_card_id} amount={change.amount} "
            f"direction={change.direction.value} status={change.status.value} affects={accounts}"
        )
        if not accounts:
            logger.info(f"Transaction {change.transaction_id} does not affect any account balance, skipping")
            return result

        timeout = self.settings.invocation_timeout_seconds
        if self.settings.reconcile_strategy == "delta":
            result.deltas = run_with_timeout(lambda: self.delta_applier.apply(change, now=now), timeout)
            return result

        if self.debouncer is not None:
            for account_id in accounts:
                self.debouncer.submit(account_id)
            result.deferred = True
            return result

        for account_id in accounts:
            try:
                recomputed = run_with_timeout(
                    lambda account_id=account_id: self.recomputer.recompute(account_id, now=now), timeout
                )
            except InvocationTimeoutError:
                logger.exception(f"Timed out recomputing account {account_id} for transaction {change.transaction_id}")
                result.timed_out_account_ids.append(account_id)
                continue
            except LedgerStoreError:
                logger.exception(f"Error recomputing account {account_id} for transaction {change.transaction_id}")
                result.failed_account_ids.append(account_id)
                continue
            if recomputed is not None:
                result.recomputed.append(recomputed)
        result.success = not (result.failed_account_ids or result.timed_out_account_ids)
        return result
