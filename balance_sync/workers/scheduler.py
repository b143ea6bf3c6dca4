"""APScheduler wiring for the daily due-transaction sweep."""

from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from balance_sync.core.models import SweepReport
from balance_sync.core.settings import Settings
from balance_sync.core.utils import get_logger

logger = get_logger("balance-sync.scheduler")

SWEEP_JOB_ID = "due-transaction-sweep"

# A missed daily run may still start this late (seconds)
MISFIRE_GRACE_TIME = 60 * 60


def run_scheduled_sweep(sweep: Callable[[], SweepReport]) -> None:
    """Run one sweep from the scheduler, logging instead of raising on failure."""
    try:
        report = sweep()
    except Exception:
        logger.exception("Scheduled sweep failed")
        return
    logger.info(f"Scheduled sweep done: {report.accounts_processed} accounts, {report.accounts_failed} failures")


def build_scheduler(settings: Settings, sweep: Callable[[], SweepReport]) -> BackgroundScheduler:
    """Create a scheduler with the daily sweep job registered but not started."""
    scheduler = BackgroundScheduler(
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": MISFIRE_GRACE_TIME,
        },
        timezone=settings.ledger_timezone,
    )
    scheduler.add_job(
        run_scheduled_sweep,
        CronTrigger(hour=settings.sweep_cron_hour, minute=settings.sweep_cron_minute, timezone=settings.ledger_timezone),
        args=(sweep,),
        id=SWEEP_JOB_ID,
        name="Due Transaction Sweep",
        replace_existing=True,
    )
    return scheduler


def start_scheduler(settings: Settings, sweep: Callable[[], SweepReport]) -> BackgroundScheduler:
    """Create and start the sweep scheduler."""
    scheduler = build_scheduler(settings, sweep)
    scheduler.start()
    logger.info(
        f"Sweep scheduled daily at {settings.sweep_cron_hour:02d}:{settings.sweep_cron_minute:02d} "
        f"({settings.ledger_timezone})"
    )
    return scheduler
