"""SQLAlchemy ORM models for the Fleetwire state database.

Two groups of tables live here:

- Tables owned by Fleetwire: ``notifications`` (the outbound/inbound
  ledger) and ``whatsapp_sessions`` (encrypted pairing credentials).
- The subset of the back-office schema the notification workflows read and
  flag: organizations, customers, drivers, trips and invoices. The
  dashboard owns these rows; Fleetwire only writes the notification flags
  (``reminder_sent``/``reminder_sent_at``, ``driver_notified``/``notified_at``)
  and the overdue status transition.

Uses SQLAlchemy 2.0 style with Mapped and mapped_column. Timestamps are
ISO8601 strings; calendar dates are ``YYYY-MM-DD`` strings so range
filters compare lexicographically. Money is stored in integer cents.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class NotificationStatus(str, Enum):
    """Status values for notification records.

    Lifecycle: pending -> sent -> responded
               pending -> failed
    """

    pending = "pending"
    sent = "sent"
    failed = "failed"
    responded = "responded"


class NotificationType(str, Enum):
    """Kinds of notification the ledger records."""

    trip_assignment = "trip_assignment"
    invoice_reminder = "invoice_reminder"
    daily_summary = "daily_summary"
    manual = "manual"
    invoice_reminder_batch = "invoice_reminder_batch"
    trip_notification_batch = "trip_notification_batch"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle values shared with the dashboard."""

    draft = "draft"
    sent = "sent"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


class TripStatus(str, Enum):
    """Trip lifecycle values shared with the dashboard."""

    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


# Invoices in these states can still be chased for payment
REMINDABLE_INVOICE_STATUSES = (
    InvoiceStatus.sent.value,
    InvoiceStatus.partial.value,
    InvoiceStatus.overdue.value,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Organization(Base):
    """Tenant of the back-office. One WhatsApp session per organization."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Recipient of the daily operations summary
    operator_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id!r}, name={self.name!r})>"


class Customer(Base):
    """Customer that receives invoice reminders."""

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    invoices: Mapped[list["Invoice"]] = relationship(back_populates="customer")

    __table_args__ = (Index("idx_customers_org", "organization_id"),)

    def __repr__(self) -> str:
        return f"<Customer(id={self.id!r}, name={self.name!r})>"


class Driver(Base):
    """Driver that receives trip assignment notifications."""

    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    trips: Mapped[list["Trip"]] = relationship(back_populates="driver")

    __table_args__ = (Index("idx_drivers_org", "organization_id"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Driver(id={self.id!r}, name={self.full_name!r})>"


class Trip(Base):
    """Scheduled load movement assigned to a driver."""

    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    driver_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True
    )
    customer_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    origin_city: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_city: Mapped[str] = mapped_column(String(100), nullable=False)
    # ISO8601 datetime
    scheduled_date: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TripStatus.scheduled.value
    )
    load_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    truck_registration: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Notification flags
    driver_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notified_at: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    driver: Mapped[Optional["Driver"]] = relationship(back_populates="trips")
    customer: Mapped[Optional["Customer"]] = relationship()

    __table_args__ = (
        Index("idx_trips_org_status", "organization_id", "status"),
        Index("idx_trips_scheduled_date", "scheduled_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Trip(id={self.id!r}, route={self.origin_city!r}->{self.destination_city!r}, "
            f"status={self.status!r})>"
        )


class Invoice(Base):
    """Customer invoice chased by the reminder sweep."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.draft.value
    )
    # YYYY-MM-DD
    due_date: Mapped[str] = mapped_column(String(10), nullable=False)

    # Notification flags
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent_at: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # Last calendar day (YYYY-MM-DD) reminders may be sent; null means no limit
    max_reminder_date: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    customer: Mapped["Customer"] = relationship(back_populates="invoices")

    __table_args__ = (
        Index("idx_invoices_org_status", "organization_id", "status"),
        Index("idx_invoices_due_date", "due_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id!r}, number={self.invoice_number!r}, "
            f"status={self.status!r})>"
        )


class NotificationRecord(Base):
    """One outbound message (or batch summary) and its delivery outcome.

    ``source_type``/``source_id`` identify the business entity the message
    is about. Inbound replies are matched back to the most recent open
    record for the sender's phone and mark it ``responded``.
    """

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    # Digits only, or "system" for batch summaries
    recipient_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.pending.value
    )
    source_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    source_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    message_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)
    sent_at: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    response_at: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_notifications_org_status", "organization_id", "status"),
        Index("idx_notifications_recipient", "recipient_phone", "status"),
        Index("idx_notifications_source", "source_type", "source_id", "type"),
        Index("idx_notifications_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationRecord(id={self.id!r}, type={self.type!r}, "
            f"status={self.status!r})>"
        )


class WhatsAppSession(Base):
    """Durable copy of a WhatsApp device-pairing credential blob.

    The blob is an AES-256-GCM envelope (see services.credential_encryption)
    bound to the session id, so a row copied to another session fails to
    decrypt.
    """

    __tablename__ = "whatsapp_sessions"

    session_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False)
    encrypted_blob: Mapped[str] = mapped_column(Text, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[str] = mapped_column(String(50), nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

    __table_args__ = (Index("idx_whatsapp_sessions_org", "organization_id"),)

    def __repr__(self) -> str:
        return f"<WhatsAppSession(session_id={self.session_id!r})>"
