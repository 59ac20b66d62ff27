"""Database module for Fleetwire notification state and business data access."""

from fleetwire.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from fleetwire.db.models import (
    Customer,
    Driver,
    Invoice,
    InvoiceStatus,
    NotificationRecord,
    NotificationStatus,
    NotificationType,
    Organization,
    Trip,
    TripStatus,
    WhatsAppSession,
)

__all__ = [
    # Models
    "Organization",
    "Customer",
    "Driver",
    "Trip",
    "Invoice",
    "NotificationRecord",
    "WhatsAppSession",
    # Enums
    "InvoiceStatus",
    "TripStatus",
    "NotificationStatus",
    "NotificationType",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
