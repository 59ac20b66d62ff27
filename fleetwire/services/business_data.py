"""Read and flag business entities for the notification workflows.

Selection queries decide which invoices and trips are due a WhatsApp
message. The ``reminder_sent``/``driver_notified`` flags together with
their timestamps are the idempotency guard: an entity flagged inside the
cooldown window is never selected again.
"""

import logging
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import exists, func, or_
from sqlalchemy.orm import Session, joinedload

from fleetwire.db.models import (
    REMINDABLE_INVOICE_STATUSES,
    Invoice,
    InvoiceStatus,
    NotificationRecord,
    NotificationStatus,
    NotificationType,
    Organization,
    Trip,
    TripStatus,
)
from fleetwire.errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_DAYS = 7
DEFAULT_BATCH_SIZE = 50


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


class BusinessDataService:
    """Queries over organizations, invoices and trips."""

    def __init__(self, db: Session) -> None:
        self._db = db

    # --- Lookups ---

    def get_organization(self, organization_id: str) -> Organization | None:
        return self._db.query(Organization).filter(Organization.id == organization_id).first()

    def list_organization_ids(self) -> list[str]:
        return [org_id for (org_id,) in self._db.query(Organization.id).order_by(Organization.created_at).all()]

    def get_invoice(self, invoice_id: str, organization_id: str | None = None) -> Invoice:
        """Fetch an invoice with its customer.

        Raises:
            NotFoundError: If no such invoice exists in the organization.
        """
        query = (
            self._db.query(Invoice)
            .options(joinedload(Invoice.customer))
            .filter(Invoice.id == invoice_id)
        )
        if organization_id:
            query = query.filter(Invoice.organization_id == organization_id)
        invoice = query.first()
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def get_trip(self, trip_id: str, organization_id: str | None = None) -> Trip:
        """Fetch a trip with driver and customer.

        Raises:
            NotFoundError: If no such trip exists in the organization.
        """
        query = (
            self._db.query(Trip)
            .options(joinedload(Trip.driver), joinedload(Trip.customer))
            .filter(Trip.id == trip_id)
        )
        if organization_id:
            query = query.filter(Trip.organization_id == organization_id)
        trip = query.first()
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        return trip

    # --- Selection ---

    @staticmethod
    def _pending_exists(type: NotificationType, source_type: str, source_id_column):
        return exists().where(
            NotificationRecord.source_type == source_type,
            NotificationRecord.source_id == source_id_column,
            NotificationRecord.type == type.value,
            NotificationRecord.status == NotificationStatus.pending.value,
        )

    def select_invoices_for_reminder(
        self,
        organization_id: str,
        now: datetime,
        cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        min_days_overdue: int = 0,
    ) -> list[Invoice]:
        """Invoices that are due a payment reminder, oldest due date first.

        Eligible when the invoice is open (sent, partial or overdue), has a
        positive balance, fell due at least ``min_days_overdue`` days ago,
        was never reminded or last reminded before the cooldown window, and
        today is not past its ``max_reminder_date``. Invoices with a pending
        invoice_reminder record are skipped; that record is already queued.
        """
        today = now.date()
        due_cutoff = (today - timedelta(days=min_days_overdue)).isoformat()
        cooldown_cutoff = start_of_day(today - timedelta(days=cooldown_days)).isoformat()
        pending_exists = self._pending_exists(NotificationType.invoice_reminder, "invoice", Invoice.id)

        return (
            self._db.query(Invoice)
            .options(joinedload(Invoice.customer))
            .filter(
                Invoice.organization_id == organization_id,
                Invoice.status.in_(REMINDABLE_INVOICE_STATUSES),
                Invoice.balance_cents > 0,
                Invoice.due_date <= due_cutoff,
                or_(
                    Invoice.reminder_sent.is_(False),
                    Invoice.reminder_sent_at < cooldown_cutoff,
                ),
                or_(
                    Invoice.max_reminder_date.is_(None),
                    Invoice.max_reminder_date >= today.isoformat(),
                ),
                ~pending_exists,
            )
            .order_by(Invoice.due_date, Invoice.id)
            .limit(batch_size)
            .all()
        )

    def select_trips_for_notification(
        self,
        organization_id: str,
        now: datetime,
        days_ahead: int = 1,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> list[Trip]:
        """Scheduled trips on the target day whose driver has not been told.

        Trips with a pending trip_assignment record are skipped; that record
        is already queued for delivery.
        """
        target_day = now.date() + timedelta(days=days_ahead)
        day_start = target_day.isoformat()
        day_end = (target_day + timedelta(days=1)).isoformat()

        pending_exists = self._pending_exists(NotificationType.trip_assignment, "trip", Trip.id)

        return (
            self._db.query(Trip)
            .options(joinedload(Trip.driver), joinedload(Trip.customer))
            .filter(
                Trip.organization_id == organization_id,
                Trip.status == TripStatus.scheduled.value,
                Trip.driver_notified.is_(False),
                Trip.driver_id.is_not(None),
                Trip.scheduled_date >= day_start,
                Trip.scheduled_date < day_end,
                ~pending_exists,
            )
            .order_by(Trip.scheduled_date, Trip.id)
            .limit(batch_size)
            .all()
        )

    # --- Flags (caller commits) ---

    @staticmethod
    def mark_invoice_reminded(invoice: Invoice, now: datetime) -> None:
        """Set the reminder flag and move a past-due invoice to overdue."""
        invoice.reminder_sent = True
        invoice.reminder_sent_at = now.isoformat()
        if invoice.due_date < now.date().isoformat() and invoice.status != InvoiceStatus.overdue.value:
            invoice.status = InvoiceStatus.overdue.value

    @staticmethod
    def mark_trip_notified(trip: Trip, now: datetime) -> None:
        trip.driver_notified = True
        trip.notified_at = now.isoformat()

    # --- Stats ---

    def get_daily_stats(self, organization_id: str, day: date) -> dict[str, int]:
        """Counts for the daily operations summary."""
        day_start = day.isoformat()
        day_end = (day + timedelta(days=1)).isoformat()

        trips_today = (
            self._db.query(func.count(Trip.id))
            .filter(
                Trip.organization_id == organization_id,
                Trip.scheduled_date >= day_start,
                Trip.scheduled_date < day_end,
                Trip.status != TripStatus.cancelled.value,
            )
            .scalar()
        )
        trips_in_progress = (
            self._db.query(func.count(Trip.id))
            .filter(
                Trip.organization_id == organization_id,
                Trip.status == TripStatus.in_progress.value,
            )
            .scalar()
        )
        overdue_count, overdue_balance = (
            self._db.query(func.count(Invoice.id), func.coalesce(func.sum(Invoice.balance_cents), 0))
            .filter(
                Invoice.organization_id == organization_id,
                Invoice.status.in_(REMINDABLE_INVOICE_STATUSES),
                Invoice.balance_cents > 0,
                Invoice.due_date < day_start,
            )
            .one()
        )
        return {
            "trips_today": trips_today or 0,
            "trips_in_progress": trips_in_progress or 0,
            "overdue_invoices": overdue_count or 0,
            "overdue_balance_cents": overdue_balance or 0,
        }
