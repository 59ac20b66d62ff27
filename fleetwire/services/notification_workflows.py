"""Notification workflows: batch sweeps, immediate sends and the pending queue.

This is the layer that turns "which business events need a message" into
dispatch calls, exactly once per event under normal operation:

- Sweeps select due invoices/trips, dispatch one message each, and on
  success set the entity's notified flag in the same commit as the ``sent``
  record. A failed entity keeps its flag clear so the next run picks it up;
  it never aborts the rest of the batch.
- Immediate sends (webhooks, operator actions) create a ``pending`` record
  first. If WhatsApp is not ready the record stays pending and is flushed
  when the connection next becomes ready. A pending record whose invoice or
  trip is no longer notifiable, or was flagged after the record was queued,
  is failed as ``SUPERSEDED`` instead of sent.
- Only a failing selection query propagates out of a sweep.

Two sweeps over the same entity in parallel can both dispatch before either
commits its flag. That window is accepted; the flag write follows the send
immediately.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleetwire.db.connection import get_db_context
from fleetwire.db.models import (
    Invoice,
    InvoiceStatus,
    NotificationRecord,
    NotificationStatus,
    NotificationType,
    Trip,
    TripStatus,
)
from fleetwire.errors import FleetwireError, NotFoundError, NotNotifiableError
from fleetwire.services.business_data import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_COOLDOWN_DAYS,
    BusinessDataService,
)
from fleetwire.services.message_templates import (
    daily_summary_message,
    invoice_reminder_message,
    trip_assignment_message,
)
from fleetwire.services.notification_service import SYSTEM_RECIPIENT, NotificationService
from fleetwire.utils.redaction import sanitize_error_message
from fleetwire.whatsapp.dispatcher import (
    DispatchErrorCode,
    DispatchResult,
    OutboundDispatcher,
    dispatch_with_timeout,
    normalize_phone,
)
from fleetwire.whatsapp.registry import ConnectionRegistry
from fleetwire.whatsapp.state import ConnectionState, ConnectionStatus

if TYPE_CHECKING:
    from fleetwire.cli.config import FleetwireConfig

logger = logging.getLogger(__name__)

MISSING_PHONE = "MISSING_PHONE"
SUPERSEDED = "SUPERSEDED"

# One flush at a time per organization
_flush_locks: dict[str, asyncio.Lock] = {}


def _flagged_since(flag: bool, flagged_at: str | None, since: str) -> bool:
    """True if an entity flag was set at or after the ISO timestamp ``since``."""
    return bool(flag) and (flagged_at is None or flagged_at >= since)


@dataclass(frozen=True)
class NotificationPolicy:
    """Tunables for the notification workflows.

    Attributes:
        cooldown_days: Minimum days between reminders for one invoice.
        batch_size: Maximum entities per sweep invocation.
        min_days_overdue: Only remind invoices at least this many days past due.
        trip_days_ahead: Notify drivers about trips this many days ahead.
        recipient_unavailable_terminal: When True, a recipient that is not on
            WhatsApp counts as handled for this channel (flag set, cooldown
            applies). When False the entity is retried on every run.
        default_organization_name: Signature used when the organization
            row has no name.
        currency_symbol: Prefix for amounts in invoice messages.
        send_timeout_seconds: Deadline for operator-triggered sends.
    """

    cooldown_days: int = DEFAULT_COOLDOWN_DAYS
    batch_size: int = DEFAULT_BATCH_SIZE
    min_days_overdue: int = 0
    trip_days_ahead: int = 1
    recipient_unavailable_terminal: bool = True
    default_organization_name: str = "Fleetwire"
    currency_symbol: str = "$"
    send_timeout_seconds: float = 30.0

    @classmethod
    def from_config(cls, config: "FleetwireConfig") -> "NotificationPolicy":
        n = config.notifications
        return cls(
            cooldown_days=n.cooldown_days,
            batch_size=n.batch_size,
            min_days_overdue=n.min_days_overdue,
            trip_days_ahead=n.trip_days_ahead,
            recipient_unavailable_terminal=n.recipient_unavailable_terminal,
            default_organization_name=n.organization_name,
            currency_symbol=n.currency_symbol,
            send_timeout_seconds=config.server.send_timeout_seconds,
        )


@dataclass
class SweepSummary:
    """Outcome of one sweep over one organization."""

    sweep: str
    organization_id: str
    processed: int = 0
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    summary_record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NotificationOutcome:
    """Result of an immediate single-entity notification."""

    status: str  # sent | failed | queued | already_notified | superseded
    record: NotificationRecord | None = None
    result: DispatchResult | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.status in ("sent", "queued", "already_notified"),
            "status": self.status,
        }
        if self.record is not None:
            data["notificationId"] = self.record.id
        if self.result is not None:
            data.update({k: v for k, v in self.result.to_dict().items() if k != "success"})
        elif self.status == "superseded":
            data["errorCode"] = SUPERSEDED
            data["error"] = self.reason
        return data


class NotificationWorkflows:
    """Notification use cases bound to one DB session.

    Args:
        db: SQLAlchemy session; committed per entity.
        registry: Connection managers by organization.
        policy: Workflow tunables.
    """

    def __init__(
        self,
        db: Session,
        registry: ConnectionRegistry,
        policy: NotificationPolicy | None = None,
    ) -> None:
        self._db = db
        self._registry = registry
        self._policy = policy or NotificationPolicy()
        self._data = BusinessDataService(db)
        self._notifications = NotificationService(db)

    # --- Dispatch helpers ---

    async def _send(self, organization_id: str, phone: str, message: str) -> DispatchResult:
        manager = self._registry.get(organization_id)
        if manager is None:
            return DispatchResult.failure(
                DispatchErrorCode.NOT_READY,
                "WhatsApp client is not initialized for this organization",
            )
        return await OutboundDispatcher(manager).send(phone, message)

    def _organization_name(self, organization_id: str) -> str:
        org = self._data.get_organization(organization_id)
        return (org.name if org else "") or self._policy.default_organization_name

    def _counts_as_handled(self, result: DispatchResult) -> bool:
        if result.success:
            return True
        return (
            result.error_code == DispatchErrorCode.RECIPIENT_UNAVAILABLE
            and self._policy.recipient_unavailable_terminal
        )

    def _invoice_message(self, invoice: Invoice, organization_name: str, now: datetime) -> str:
        return invoice_reminder_message(
            customer_name=invoice.customer.name,
            invoice_number=invoice.invoice_number,
            total_cents=invoice.total_cents,
            balance_cents=invoice.balance_cents,
            due_date=invoice.due_date,
            organization_name=organization_name,
            today=now.date(),
            currency_symbol=self._policy.currency_symbol,
        )

    @staticmethod
    def _trip_message(trip: Trip) -> str:
        return trip_assignment_message(
            driver_name=trip.driver.full_name,
            origin_city=trip.origin_city,
            destination_city=trip.destination_city,
            scheduled_date=trip.scheduled_date,
            truck_registration=trip.truck_registration,
            customer_name=trip.customer.name if trip.customer else None,
            load_description=trip.load_description,
        )

    # --- Sweeps ---

    async def run_invoice_reminders(
        self, organization_id: str, now: datetime | None = None
    ) -> SweepSummary:
        """Send payment reminders for due invoices of one organization.

        Raises:
            FleetwireError: E-4002 if the candidate query fails.
        """
        now = now or datetime.now(UTC)
        try:
            invoices = self._data.select_invoices_for_reminder(
                organization_id,
                now,
                cooldown_days=self._policy.cooldown_days,
                batch_size=self._policy.batch_size,
                min_days_overdue=self._policy.min_days_overdue,
            )
        except SQLAlchemyError as e:
            self._db.rollback()
            raise FleetwireError.from_code(
                "E-4002", status_code=500, sweep="invoice reminder", reason=sanitize_error_message(str(e))
            ) from e

        summary = SweepSummary(sweep="invoice_reminders", organization_id=organization_id)
        organization_name = self._organization_name(organization_id)
        for invoice in invoices:
            summary.processed += 1
            label = f"Invoice {invoice.invoice_number}"
            try:
                result = await self._remind_invoice(invoice, organization_name, now)
            except Exception as e:
                self._db.rollback()
                logger.error("%s: reminder failed unexpectedly: %s", label, e, exc_info=True)
                summary.failed += 1
                summary.errors.append(f"{label}: {sanitize_error_message(str(e))}")
                continue
            if result.success:
                summary.sent += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{label}: {result.error}")

        self._emit_summary(summary, NotificationType.invoice_reminder_batch)
        logger.info(
            "Invoice reminder sweep for %s: processed=%d sent=%d failed=%d",
            organization_id, summary.processed, summary.sent, summary.failed,
        )
        return summary

    async def _remind_invoice(self, invoice: Invoice, organization_name: str, now: datetime) -> DispatchResult:
        message = self._invoice_message(invoice, organization_name, now)
        metadata = {"invoiceId": invoice.id, "invoiceNumber": invoice.invoice_number}
        phone = invoice.customer.phone if invoice.customer else None
        if not phone:
            result = DispatchResult.failure(
                DispatchErrorCode.VALIDATION_ERROR,
                f"Customer '{invoice.customer_id}' has no phone number on file",
            )
            self._record_missing_phone(invoice.organization_id, NotificationType.invoice_reminder,
                                       message, "invoice", invoice.id, metadata, result.error)
            return result

        result = await self._send(invoice.organization_id, phone, message)
        if self._counts_as_handled(result):
            self._data.mark_invoice_reminded(invoice, now)
        self._notifications.record_result(
            invoice.organization_id,
            NotificationType.invoice_reminder,
            phone,
            message,
            result,
            source_type="invoice",
            source_id=invoice.id,
            metadata=metadata,
        )
        return result

    async def run_trip_notifications(
        self, organization_id: str, now: datetime | None = None
    ) -> SweepSummary:
        """Notify drivers about upcoming trips of one organization.

        Raises:
            FleetwireError: E-4002 if the candidate query fails.
        """
        now = now or datetime.now(UTC)
        try:
            trips = self._data.select_trips_for_notification(
                organization_id,
                now,
                days_ahead=self._policy.trip_days_ahead,
                batch_size=self._policy.batch_size,
            )
        except SQLAlchemyError as e:
            self._db.rollback()
            raise FleetwireError.from_code(
                "E-4002", status_code=500, sweep="trip notification", reason=sanitize_error_message(str(e))
            ) from e

        summary = SweepSummary(sweep="trip_notifications", organization_id=organization_id)
        for trip in trips:
            summary.processed += 1
            label = f"Trip {trip.id}"
            try:
                result = await self._notify_trip(trip, now)
            except Exception as e:
                self._db.rollback()
                logger.error("%s: notification failed unexpectedly: %s", label, e, exc_info=True)
                summary.failed += 1
                summary.errors.append(f"{label}: {sanitize_error_message(str(e))}")
                continue
            if result.success:
                summary.sent += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{label}: {result.error}")

        self._emit_summary(summary, NotificationType.trip_notification_batch)
        logger.info(
            "Trip notification sweep for %s: processed=%d sent=%d failed=%d",
            organization_id, summary.processed, summary.sent, summary.failed,
        )
        return summary

    async def _notify_trip(self, trip: Trip, now: datetime) -> DispatchResult:
        message = self._trip_message(trip)
        metadata = {"tripId": trip.id}
        phone = trip.driver.phone if trip.driver else None
        if not phone:
            result = DispatchResult.failure(
                DispatchErrorCode.VALIDATION_ERROR,
                f"Driver '{trip.driver_id}' has no phone number on file",
            )
            self._record_missing_phone(trip.organization_id, NotificationType.trip_assignment,
                                       message, "trip", trip.id, metadata, result.error)
            return result

        result = await self._send(trip.organization_id, phone, message)
        if self._counts_as_handled(result):
            self._data.mark_trip_notified(trip, now)
        self._notifications.record_result(
            trip.organization_id,
            NotificationType.trip_assignment,
            phone,
            message,
            result,
            source_type="trip",
            source_id=trip.id,
            metadata=metadata,
        )
        return result

    async def run_sweep(
        self,
        sweep: str,
        organization_id: str | None = None,
        now: datetime | None = None,
    ) -> list[SweepSummary]:
        """Run ``sweep`` ("invoice_reminders" or "trip_notifications") for one or all organizations.

        Raises:
            ValueError: Unknown sweep name.
            FleetwireError: E-4002 if a candidate query fails.
        """
        runners = {
            "invoice_reminders": self.run_invoice_reminders,
            "trip_notifications": self.run_trip_notifications,
        }
        if sweep not in runners:
            raise ValueError(f"Unknown sweep: {sweep}")
        run = runners[sweep]
        organization_ids = [organization_id] if organization_id else self._data.list_organization_ids()
        return [await run(org_id, now) for org_id in organization_ids]

    def _record_missing_phone(
        self,
        organization_id: str,
        type: NotificationType,
        message: str,
        source_type: str,
        source_id: str,
        metadata: dict[str, Any],
        error: str,
    ) -> None:
        self._notifications.record_failure(
            organization_id, type, "", message, MISSING_PHONE, error,
            source_type=source_type, source_id=source_id, metadata=metadata,
        )

    def _emit_summary(self, summary: SweepSummary, type: NotificationType) -> None:
        record = self._notifications.create(
            summary.organization_id,
            type,
            SYSTEM_RECIPIENT,
            f"Processed {summary.processed}: {summary.sent} sent, {summary.failed} failed.",
            status=NotificationStatus.sent,
            metadata={
                "processed": summary.processed,
                "sent": summary.sent,
                "failed": summary.failed,
                "errors": len(summary.errors),
            },
        )
        summary.summary_record_id = record.id

    # --- Immediate sends ---

    @staticmethod
    def _trip_block_reason(trip: Trip) -> str | None:
        """Why a trip cannot be notified right now, or None."""
        if trip.status != TripStatus.scheduled.value:
            return f"status is {trip.status}"
        if trip.driver is None:
            return "no driver assigned"
        if not trip.driver.phone:
            return "driver has no phone number"
        try:
            normalize_phone(trip.driver.phone)
        except ValueError as e:
            return f"driver phone is invalid: {e}"
        return None

    @staticmethod
    def _invoice_block_reason(invoice: Invoice) -> str | None:
        """Why an invoice cannot be reminded right now, or None."""
        if invoice.status in (InvoiceStatus.paid.value, InvoiceStatus.cancelled.value):
            return f"status is {invoice.status}"
        if invoice.balance_cents <= 0:
            return "no outstanding balance"
        if not invoice.customer or not invoice.customer.phone:
            return "customer has no phone number"
        try:
            normalize_phone(invoice.customer.phone)
        except ValueError as e:
            return f"customer phone is invalid: {e}"
        return None

    async def notify_trip_assignment(
        self,
        trip_id: str,
        organization_id: str,
        send_immediately: bool = True,
        force: bool = False,
    ) -> NotificationOutcome:
        """Notify the assigned driver about one trip.

        Already-notified trips are skipped unless ``force`` is set; a trip
        with a pending record reuses it instead of queueing a duplicate.

        Raises:
            NotFoundError: Unknown trip.
            NotNotifiableError: Trip is not scheduled, has no driver, or the
                driver has no usable phone number.
        """
        trip = self._data.get_trip(trip_id, organization_id)
        reason = self._trip_block_reason(trip)
        if reason:
            raise NotNotifiableError("Trip", trip_id, reason)
        if trip.driver_notified and not force:
            return NotificationOutcome(status="already_notified")

        record = self._notifications.find_for_source(NotificationType.trip_assignment, "trip", trip.id)
        if record is None:
            record = self._notifications.create(
                organization_id,
                NotificationType.trip_assignment,
                normalize_phone(trip.driver.phone),
                self._trip_message(trip),
                source_type="trip",
                source_id=trip.id,
                metadata={"tripId": trip.id},
            )
        if not send_immediately:
            return NotificationOutcome(status="queued", record=record)
        return await self._deliver_pending(record, force=force)

    async def send_invoice_reminder(
        self,
        invoice_id: str,
        organization_id: str,
        send_immediately: bool = True,
    ) -> NotificationOutcome:
        """Send a payment reminder for one invoice on operator request.

        This is an explicit action, so the cooldown does not apply; a pending
        reminder for the same invoice is reused rather than duplicated.

        Raises:
            NotFoundError: Unknown invoice.
            NotNotifiableError: Invoice is paid, cancelled, settled, or the
                customer has no usable phone number.
        """
        invoice = self._data.get_invoice(invoice_id, organization_id)
        reason = self._invoice_block_reason(invoice)
        if reason:
            raise NotNotifiableError("Invoice", invoice_id, reason)

        record = self._notifications.find_for_source(NotificationType.invoice_reminder, "invoice", invoice.id)
        if record is None:
            now = datetime.now(UTC)
            record = self._notifications.create(
                organization_id,
                NotificationType.invoice_reminder,
                normalize_phone(invoice.customer.phone),
                self._invoice_message(invoice, self._organization_name(organization_id), now),
                source_type="invoice",
                source_id=invoice.id,
                metadata={"invoiceId": invoice.id, "invoiceNumber": invoice.invoice_number},
            )
        if not send_immediately:
            return NotificationOutcome(status="queued", record=record)
        return await self._deliver_pending(record)

    async def _deliver_pending(self, record: NotificationRecord, force: bool = False) -> NotificationOutcome:
        """Dispatch a pending record. NOT_READY leaves it pending for the flush.

        The source entity is reloaded first; a record it no longer warrants
        is failed as SUPERSEDED without touching WhatsApp.
        """
        reason = self._superseded_reason(record, force)
        if reason is not None:
            logger.info("Notification %s superseded: %s", record.id, reason)
            self._notifications.fail(record, SUPERSEDED, reason)
            return NotificationOutcome(status="superseded", record=record, reason=reason)

        result = await self._send(record.organization_id, record.recipient_phone, record.message)
        if result.error_code == DispatchErrorCode.NOT_READY:
            logger.info("Notification %s queued until WhatsApp is ready", record.id)
            return NotificationOutcome(status="queued", record=record, result=result)

        if self._counts_as_handled(result):
            self._flag_source(record, datetime.now(UTC))
        self._notifications.resolve(record, result)
        return NotificationOutcome(
            status="sent" if result.success else "failed", record=record, result=result
        )

    def _superseded_reason(self, record: NotificationRecord, force: bool) -> str | None:
        # A flag set at or after queueing time means another path already delivered
        if record.source_type == "trip" and record.source_id:
            try:
                trip = self._data.get_trip(record.source_id, record.organization_id)
            except NotFoundError:
                return "trip no longer exists"
            reason = self._trip_block_reason(trip)
            if reason:
                return f"trip {reason}"
            if not force and _flagged_since(trip.driver_notified, trip.notified_at, record.created_at):
                return "driver was already notified"
        elif record.source_type == "invoice" and record.source_id:
            try:
                invoice = self._data.get_invoice(record.source_id, record.organization_id)
            except NotFoundError:
                return "invoice no longer exists"
            reason = self._invoice_block_reason(invoice)
            if reason:
                return f"invoice {reason}"
            if _flagged_since(invoice.reminder_sent, invoice.reminder_sent_at, record.created_at):
                return "invoice was already reminded"
        return None

    def _flag_source(self, record: NotificationRecord, now: datetime) -> None:
        if record.source_type == "trip" and record.source_id:
            self._data.mark_trip_notified(self._data.get_trip(record.source_id), now)
        elif record.source_type == "invoice" and record.source_id:
            self._data.mark_invoice_reminded(self._data.get_invoice(record.source_id), now)

    async def flush_pending(self, organization_id: str) -> dict[str, int]:
        """Deliver queued records for an organization, oldest first.

        Stops at the first NOT_READY so the remainder waits for the next
        ready transition.
        """
        lock = _flush_locks.setdefault(organization_id, asyncio.Lock())
        counts = {"attempted": 0, "sent": 0, "failed": 0, "superseded": 0, "remaining": 0}
        async with lock:
            pending = self._notifications.list_pending(organization_id, limit=self._policy.batch_size)
            for index, record in enumerate(pending):
                try:
                    outcome = await self._deliver_pending(record)
                except Exception as e:
                    self._db.rollback()
                    logger.error("Flushing notification %s failed: %s", record.id, e, exc_info=True)
                    counts["failed"] += 1
                    continue
                if outcome.status == "queued":
                    counts["remaining"] = len(pending) - index
                    break
                if outcome.status == "superseded":
                    counts["superseded"] += 1
                    continue
                counts["attempted"] += 1
                counts[outcome.status] += 1
        if counts["attempted"] or counts["superseded"]:
            logger.info("Flushed pending notifications for %s: %s", organization_id, counts)
        return counts

    async def send_daily_summary(
        self, organization_id: str, now: datetime | None = None
    ) -> NotificationOutcome:
        """Send the day's operations summary to the organization's operator.

        At most one summary is sent per organization per day.

        Raises:
            NotFoundError: Unknown organization.
            NotNotifiableError: Organization has no operator phone.
        """
        now = now or datetime.now(UTC)
        org = self._data.get_organization(organization_id)
        if org is None:
            raise NotFoundError("Organization", organization_id)
        if not org.operator_phone:
            raise NotNotifiableError("Organization", organization_id, "no operator phone number")

        day = now.date()
        day_key = day.isoformat()
        try:
            operator_phone = normalize_phone(org.operator_phone)
        except ValueError as e:
            raise NotNotifiableError("Organization", organization_id, str(e)) from e
        if self._notifications.exists_for_date(
            organization_id, NotificationType.daily_summary, operator_phone, day_key
        ):
            return NotificationOutcome(status="already_notified")

        stats = self._data.get_daily_stats(organization_id, day)
        message = daily_summary_message(org.name or self._policy.default_organization_name, day, stats)
        result = await self._send(organization_id, operator_phone, message)
        record = self._notifications.record_result(
            organization_id,
            NotificationType.daily_summary,
            operator_phone,
            message,
            result,
            metadata={"date": day_key, **stats},
        )
        return NotificationOutcome(
            status="sent" if result.success else "failed", record=record, result=result
        )

    # --- Operator sends ---

    async def send_manual(
        self,
        organization_id: str,
        phone: str,
        message: str,
        type: NotificationType = NotificationType.manual,
        metadata: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Send an operator-composed message, bypassing idempotency.

        The send is recorded for the dispatch counters unless it failed
        validation before reaching WhatsApp.
        """
        manager = self._registry.get(organization_id)
        if manager is None:
            result = DispatchResult.failure(
                DispatchErrorCode.NOT_READY,
                "WhatsApp client is not initialized for this organization",
            )
        else:
            result = await dispatch_with_timeout(
                OutboundDispatcher(manager), phone, message, self._policy.send_timeout_seconds
            )
        if result.error_code != DispatchErrorCode.VALIDATION_ERROR:
            self._notifications.record_result(
                organization_id, type, phone, message, result, metadata=metadata
            )
        return result


def make_ready_listener(
    registry: ConnectionRegistry,
    policy: NotificationPolicy | None = None,
    db_context: Callable[[], AbstractContextManager[Session]] = get_db_context,
) -> Callable[[str, ConnectionState, ConnectionState], None]:
    """Build a registry listener that flushes queued records when a connection turns ready."""
    background: set[asyncio.Task] = set()

    async def _flush(organization_id: str) -> None:
        try:
            with db_context() as db:
                await NotificationWorkflows(db, registry, policy).flush_pending(organization_id)
        except Exception:
            logger.exception("Flushing pending notifications for %s failed", organization_id)

    def _listener(organization_id: str, previous: ConnectionState, current: ConnectionState) -> None:
        if current.status == ConnectionStatus.ready and previous.status != ConnectionStatus.ready:
            task = asyncio.ensure_future(_flush(organization_id))
            background.add(task)
            task.add_done_callback(background.discard)

    return _listener
