"""Due-transaction sweeper.

Time passing makes future-dated transactions due without any ledger mutation, so nothing else would trigger a reconciliation for them. The sweeper walks every account-owning user, finds accounts holding due transactions and reconciles each one. Failures are isolated per account and per user: they are logged, counted in the report, and the sweep carries on. Each account reconciliation is bounded by the invocation timeout.
"""

import concurrent.futures
from collections.abc import Callable, Iterable
from datetime import datetime
from functools import partial

from balance_sync.core.models import SweepReport
from balance_sync.core.settings import Settings
from balance_sync.core.utils import as_utc, end_of_day, get_logger, utcnow
from balance_sync.services.delta import DeltaApplier
from balance_sync.services.ledger_store import LedgerStore
from balance_sync.services.recompute import BalanceRecomputer
from balance_sync.workers.invocation import run_with_timeout

logger = get_logger("balance-sync.sweeper")


class DueTransactionSweeper:
    """Finds accounts with due transactions and reconciles them."""

    def __init__(
        self,
        store: LedgerStore,
        recomputer: BalanceRecomputer,
        delta_applier: DeltaApplier,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the sweeper with the store, both reconciliation paths, settings and a wall clock."""
        self.store = store
        self.recomputer = recomputer
        self.delta_applier = delta_applier
        self.settings = settings
        self.clock = clock

    def run(self, now: datetime | None = None) -> SweepReport:
        """Sweep every account-owning user once."""
        report = self._start_report(now)
        logger.info(f"Starting due-transaction sweep as of {report.as_of.isoformat()}")
        seen_users: set[str] = set()
        for page in self.store.iter_account_pages(page_size=self.settings.sweep_page_size):
            for account in page.items:
                if account.user_id in seen_users:
                    continue
                seen_users.add(account.user_id)
                try:
                    self._sweep_user(account.user_id, report.as_of, report)
                    report.users_processed += 1
                except Exception:
                    report.users_failed += 1
                    logger.exception(f"Error sweeping user {account.user_id}")
        report.finished_at = self.clock()
        logger.info(
            f"Sweep finished: users={report.users_processed} users_failed={report.users_failed} "
            f"accounts={report.accounts_processed} accounts_failed={report.accounts_failed}"
        )
        return report

    def reprocess_all(self, now: datetime | None = None) -> SweepReport:
        """Fully recompute every account of every user, due transactions or not."""
        report = self._start_report(now)
        logger.info(f"Starting global recomputation as of {report.as_of.isoformat()}")
        users: set[str] = set()
        for page in self.store.iter_account_pages(page_size=self.settings.sweep_page_size):
            users.update(account.user_id for account in page.items)
            self._reconcile_all(
                [account.id for account in page.items],
                lambda account_id: self.recomputer.recompute(account_id, now=report.as_of),
                report,
            )
        report.users_processed = len(users)
        report.finished_at = self.clock()
        logger.info(
            f"Global recomputation finished: users={report.users_processed} "
            f"accounts={report.accounts_processed} accounts_failed={report.accounts_failed}"
        )
        return report

    def process_user(self, user_id: str, now: datetime | None = None) -> SweepReport:
        """Reconcile the accounts of one user that hold due transactions."""
        report = self._start_report(now)
        self._sweep_user(user_id, report.as_of, report)
        report.users_processed = 1
        report.finished_at = self.clock()
        return report

    def reprocess_user(self, user_id: str, now: datetime | None = None) -> SweepReport:
        """Fully recompute every account of one user, due transactions or not."""
        report = self._start_report(now)
        accounts = [account.id for account in self.store.list_accounts_for_user(user_id)]
        logger.info(f"Reprocessing {len(accounts)} accounts of user {user_id}")
        self._reconcile_all(
            accounts, lambda account_id: self.recomputer.recompute(account_id, now=report.as_of), report
        )
        report.users_processed = 1
        report.finished_at = self.clock()
        return report

    def due_accounts(self, user_id: str, now: datetime) -> list[str]:
        """Accounts of a user holding transactions that are due at ``now``."""
        cutoff = end_of_day(now, self.settings.ledger_timezone)
        due_by_account: dict[str, set[str]] = {}
        for txn in self.store.iter_due_transactions_for_user(
            user_id, cutoff, page_size=self.settings.transaction_page_size
        ):
            if txn.account_id and not txn.credit_card_id:
                due_by_account.setdefault(txn.account_id, set()).add(txn.id)
        if not self.settings.sweep_only_unsynced:
            return list(due_by_account)
        return [account_id for account_id, due in due_by_account.items() if self._has_unsynced(account_id, due)]

    def _has_unsynced(self, account_id: str, due_ids: set[str]) -> bool:
        account = self.store.get_account(account_id)
        return account is not None and not due_ids.issubset(account.synced_transaction_ids)

    def _sweep_user(self, user_id: str, now: datetime, report: SweepReport) -> None:
        accounts = self.due_accounts(user_id, now)
        if not accounts:
            logger.info(f"No due transactions for user {user_id}")
            return
        logger.info(f"Found {len(accounts)} accounts with due transactions for user {user_id}")
        if self.settings.reconcile_strategy == "delta":
            reconcile = lambda account_id: self.delta_applier.settle_due(account_id, now=now)  # noqa: E731
        else:
            reconcile = lambda account_id: self.recomputer.recompute(account_id, now=now)  # noqa: E731
        self._reconcile_all(accounts, reconcile, report)

    def _start_report(self, now: datetime | None) -> SweepReport:
        started_at = self.clock()
        return SweepReport(started_at=started_at, as_of=as_utc(now) if now else started_at)

    def _reconcile_all(self, accounts: Iterable[str], reconcile: Callable[[str], object], report: SweepReport) -> None:
        timeout = self.settings.invocation_timeout_seconds
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.settings.sweep_workers) as executor:
            futures = {
                executor.submit(run_with_timeout, partial(reconcile, account_id), timeout): account_id
                for account_id in accounts
            }
            for future in concurrent.futures.as_completed(futures):
                account_id = futures[future]
                try:
                    future.result()
                except Exception:
                    report.accounts_failed += 1
                    report.failed_account_ids.append(account_id)
                    logger.exception(f"Error reconciling account {account_id}, continuing sweep")
                else:
                    report.accounts_processed += 1
