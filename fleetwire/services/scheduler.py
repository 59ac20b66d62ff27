"""In-process cron for the notification sweeps.

Optional: deployments that drive ``/api/v1/cron/*`` from an external
scheduler leave this disabled. Jobs run on the API's event loop so they
share the connection registry with the HTTP handlers.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from fleetwire.cli.config import SchedulerConfig
from fleetwire.db.connection import get_db_context
from fleetwire.errors import DomainError, FleetwireError, format_error
from fleetwire.services.business_data import BusinessDataService
from fleetwire.services.notification_workflows import NotificationPolicy, NotificationWorkflows
from fleetwire.whatsapp.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class NotificationScheduler:
    """Runs the invoice, trip and daily summary jobs on cron triggers.

    Args:
        registry: Connection managers shared with the API.
        config: Schedule hours and timezone.
        policy: Workflow tunables.
        db_context: Session factory for job bodies.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        config: SchedulerConfig,
        policy: NotificationPolicy,
        db_context: Callable[[], AbstractContextManager[Session]] = get_db_context,
    ) -> None:
        self._registry = registry
        self._config = config
        self._policy = policy
        self._db_context = db_context
        self.scheduler = AsyncIOScheduler(timezone=config.timezone)

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_invoice_reminders,
            CronTrigger(hour=self._config.invoice_reminder_hour, minute=0),
            id="invoice_reminders",
            name="Invoice payment reminders",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_trip_notifications,
            CronTrigger(hour=self._config.trip_notification_hour, minute=0),
            id="trip_notifications",
            name="Driver trip notifications",
            replace_existing=True,
        )
        if self._config.daily_summary_enabled:
            self.scheduler.add_job(
                self.send_daily_summaries,
                CronTrigger(hour=self._config.daily_summary_hour, minute=0),
                id="daily_summary",
                name="Operator daily summary",
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info("Notification scheduler started (timezone=%s)", self._config.timezone)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Notification scheduler stopped")

    async def _run_sweep(self, sweep: str) -> None:
        with self._db_context() as db:
            workflows = NotificationWorkflows(db, self._registry, self._policy)
            try:
                summaries = await workflows.run_sweep(sweep)
            except FleetwireError as e:
                logger.error("Scheduled %s sweep aborted:\n%s", sweep, format_error(e))
                return
        for summary in summaries:
            if summary.failed:
                logger.warning(
                    "Scheduled %s for %s: %d of %d failed",
                    sweep, summary.organization_id, summary.failed, summary.processed,
                )

    async def run_invoice_reminders(self) -> None:
        await self._run_sweep("invoice_reminders")

    async def run_trip_notifications(self) -> None:
        await self._run_sweep("trip_notifications")

    async def send_daily_summaries(self) -> None:
        """Send today's summary to every organization with an operator phone."""
        with self._db_context() as db:
            workflows = NotificationWorkflows(db, self._registry, self._policy)
            for organization_id in BusinessDataService(db).list_organization_ids():
                try:
                    outcome = await workflows.send_daily_summary(organization_id)
                except DomainError as e:
                    logger.debug("Skipping daily summary for %s: %s", organization_id, e.message)
                    continue
                if outcome.status == "failed":
                    logger.warning(
                        "Daily summary for %s failed: %s", organization_id, outcome.result.error
                    )
