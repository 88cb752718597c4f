"""Background task scheduler for the daily billing run."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .logging_config import get_logger

if TYPE_CHECKING:
    from .context import AppContext

logger = get_logger("scheduler")

TICK_JOB_ID = "daily_billing_tick"


class BillingScheduler:
    """Runs subscriptions, expected incomes and the overdue refresh once a day."""

    def __init__(self, ctx: AppContext):
        """Initialize the scheduler with app context.

        Args:
            ctx: Application context with services and config
        """
        self.ctx = ctx
        self.scheduler: Optional[BaseScheduler] = None

    def start(self, *, blocking: bool = False) -> None:
        """Start the scheduler; ``blocking`` keeps the calling thread inside it."""
        if self.scheduler is not None:
            logger.warning("Scheduler already running")
            return

        config = self.ctx.config
        self.scheduler = BlockingScheduler() if blocking else BackgroundScheduler()
        self.scheduler.add_job(
            func=self.run_once,
            trigger=CronTrigger(hour=config.SCHEDULER_HOUR, minute=config.SCHEDULER_MINUTE),
            id=TICK_JOB_ID,
            name="Daily Billing Run",
            replace_existing=True,
            # A run that overlaps the next firing is dropped rather than stacked.
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "Scheduled daily billing run",
            extra={"hour": config.SCHEDULER_HOUR, "minute": config.SCHEDULER_MINUTE},
        )
        self.scheduler.start()

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=True)
            self.scheduler = None
            logger.info("Billing scheduler stopped")

    def run_once(self, today: Optional[date] = None) -> Optional[dict[str, Any]]:
        """Execute one tick; errors are logged so the next firing still happens."""
        try:
            return self.ctx.ledger.run_scheduler_tick(today)
        except Exception as exc:
            logger.error(f"Billing run failed: {exc}", exc_info=True)
            return None


def create_scheduler(ctx: AppContext, *, auto_start: bool = False) -> BillingScheduler:
    """Create and optionally start a billing scheduler.

    Args:
        ctx: Application context
        auto_start: Whether to start the scheduler immediately

    Returns:
        BillingScheduler instance
    """
    scheduler = BillingScheduler(ctx)
    if auto_start:
        scheduler.start()
    return scheduler
