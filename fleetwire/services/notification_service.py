"""Notification ledger operations.

Every outbound WhatsApp message Fleetwire sends (or fails to send) leaves a
NotificationRecord. The ledger backs the status counters, the pending
queue, duplicate suppression for immediate sends, and inbound reply
matching.

Lifecycle: pending -> sent -> responded
           pending -> failed
"""

import json
import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from fleetwire.db.models import (
    NotificationRecord,
    NotificationStatus,
    NotificationType,
    utc_now_iso,
)
from fleetwire.utils.redaction import sanitize_error_message
from fleetwire.whatsapp.dispatcher import DispatchResult

logger = logging.getLogger(__name__)

SYSTEM_RECIPIENT = "system"

VALID_TRANSITIONS: dict[NotificationStatus, list[NotificationStatus]] = {
    NotificationStatus.pending: [NotificationStatus.sent, NotificationStatus.failed],
    NotificationStatus.sent: [NotificationStatus.responded],
    NotificationStatus.failed: [],  # terminal; a retry creates a new record
    NotificationStatus.responded: [],  # terminal
}

# Record types that carry a business source reference and can be answered
_RESPONDABLE_TYPES = (
    NotificationType.trip_assignment.value,
    NotificationType.invoice_reminder.value,
)


class InvalidNotificationTransition(Exception):
    """Raised when a notification record is moved against its lifecycle."""

    def __init__(self, record_id: str, current: str, attempted: str) -> None:
        self.record_id = record_id
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Notification {record_id}: cannot transition from '{current}' to '{attempted}'"
        )


class NotificationService:
    """Service for reading and writing the notification ledger.

    Methods that change state commit the session, so any source-entity flag
    changes made on the same session land atomically with the record.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    # --- Create ---

    def create(
        self,
        organization_id: str,
        type: NotificationType | str,
        recipient_phone: str,
        message: str,
        status: NotificationStatus = NotificationStatus.pending,
        source_type: str | None = None,
        source_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Insert a record and commit.

        Args:
            organization_id: Owning organization.
            type: Notification type.
            recipient_phone: Normalized digits, or "system" for summaries.
            message: Message body as sent.
            status: Initial status.
            source_type: "trip", "invoice", or None.
            source_id: Id of the source entity.
            metadata: Extra JSON metadata.

        Returns:
            The persisted NotificationRecord.
        """
        record = NotificationRecord(
            organization_id=organization_id,
            type=type.value if isinstance(type, NotificationType) else type,
            recipient_phone=recipient_phone,
            message=message,
            status=status.value,
            source_type=source_type,
            source_id=source_id,
            metadata_json=json.dumps(metadata) if metadata else None,
        )
        if status == NotificationStatus.sent:
            record.sent_at = utc_now_iso()
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        return record

    def record_result(
        self,
        organization_id: str,
        type: NotificationType | str,
        recipient_phone: str,
        message: str,
        result: DispatchResult,
        source_type: str | None = None,
        source_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Insert a record already resolved to sent or failed by ``result``."""
        record = NotificationRecord(
            organization_id=organization_id,
            type=type.value if isinstance(type, NotificationType) else type,
            recipient_phone=result.recipient or recipient_phone,
            message=message,
            source_type=source_type,
            source_id=source_id,
            metadata_json=json.dumps(metadata) if metadata else None,
        )
        self._apply_result(record, result)
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        return record

    def record_failure(
        self,
        organization_id: str,
        type: NotificationType | str,
        recipient_phone: str,
        message: str,
        error_code: str,
        error_message: str,
        source_type: str | None = None,
        source_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        """Insert a failed record for a message that never reached dispatch."""
        record = NotificationRecord(
            organization_id=organization_id,
            type=type.value if isinstance(type, NotificationType) else type,
            recipient_phone=recipient_phone,
            message=message,
            status=NotificationStatus.failed.value,
            source_type=source_type,
            source_id=source_id,
            error_code=error_code,
            error_message=sanitize_error_message(error_message),
            metadata_json=json.dumps(metadata) if metadata else None,
        )
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        return record

    # --- Transitions ---

    def _transition(self, record: NotificationRecord, target: NotificationStatus) -> None:
        current = NotificationStatus(record.status)
        if target not in VALID_TRANSITIONS[current]:
            raise InvalidNotificationTransition(record.id, current.value, target.value)
        record.status = target.value

    def _apply_result(self, record: NotificationRecord, result: DispatchResult) -> None:
        if result.success:
            record.status = NotificationStatus.sent.value
            record.sent_at = utc_now_iso()
            record.message_id = result.message_id
            record.error_code = None
            record.error_message = None
        else:
            record.status = NotificationStatus.failed.value
            record.error_code = result.error_code.value if result.error_code else None
            record.error_message = sanitize_error_message(result.error)
        if result.recipient:
            record.recipient_phone = result.recipient

    def resolve(self, record: NotificationRecord, result: DispatchResult) -> NotificationRecord:
        """Move a pending record to sent or failed according to ``result``."""
        target = NotificationStatus.sent if result.success else NotificationStatus.failed
        self._transition(record, target)
        self._apply_result(record, result)
        self._db.commit()
        return record

    def fail(self, record: NotificationRecord, error_code: str, error_message: str) -> NotificationRecord:
        """Move a pending record to failed without a dispatch attempt."""
        self._transition(record, NotificationStatus.failed)
        record.error_code = error_code
        record.error_message = sanitize_error_message(error_message)
        self._db.commit()
        return record

    def mark_responded(
        self, record: NotificationRecord, response_data: dict[str, Any]
    ) -> NotificationRecord:
        """Attach an inbound reply to a sent record.

        A reply that arrives while the record is still pending (the send
        completed but the ledger write is racing) resolves it to sent first.
        """
        if record.status == NotificationStatus.pending.value:
            self._transition(record, NotificationStatus.sent)
            record.sent_at = record.sent_at or utc_now_iso()
        self._transition(record, NotificationStatus.responded)
        record.response_at = utc_now_iso()
        record.response_data = json.dumps(response_data)
        self._db.commit()
        return record

    # --- Queries ---

    def get(self, record_id: str) -> NotificationRecord | None:
        return self._db.query(NotificationRecord).filter(NotificationRecord.id == record_id).first()

    def count_by_status(self, organization_id: str, *statuses: NotificationStatus) -> int:
        """Count non-summary records of the organization in ``statuses``."""
        return (
            self._db.query(func.count(NotificationRecord.id))
            .filter(
                NotificationRecord.organization_id == organization_id,
                NotificationRecord.status.in_([s.value for s in statuses]),
                NotificationRecord.recipient_phone != SYSTEM_RECIPIENT,
            )
            .scalar()
            or 0
        )

    def get_counters(self, organization_id: str) -> dict[str, int]:
        """Dispatch counters for the status endpoint."""
        return {
            "messagesSent": self.count_by_status(
                organization_id, NotificationStatus.sent, NotificationStatus.responded
            ),
            "queuedMessages": self.count_by_status(organization_id, NotificationStatus.pending),
        }

    def list_pending(self, organization_id: str, limit: int = 50) -> list[NotificationRecord]:
        """Oldest-first pending records awaiting a ready connection."""
        return (
            self._db.query(NotificationRecord)
            .filter(
                NotificationRecord.organization_id == organization_id,
                NotificationRecord.status == NotificationStatus.pending.value,
                NotificationRecord.recipient_phone != SYSTEM_RECIPIENT,
            )
            .order_by(NotificationRecord.created_at)
            .limit(limit)
            .all()
        )

    def find_for_source(
        self,
        type: NotificationType,
        source_type: str,
        source_id: str,
        statuses: tuple[NotificationStatus, ...] = (NotificationStatus.pending,),
    ) -> NotificationRecord | None:
        """Most recent record of ``type`` for a source entity in ``statuses``."""
        return (
            self._db.query(NotificationRecord)
            .filter(
                NotificationRecord.type == type.value,
                NotificationRecord.source_type == source_type,
                NotificationRecord.source_id == source_id,
                NotificationRecord.status.in_([s.value for s in statuses]),
            )
            .order_by(NotificationRecord.created_at.desc())
            .first()
        )

    def find_open_for_response(self, organization_id: str, phone_digits: str) -> NotificationRecord | None:
        """Most recent answerable record sent to ``phone_digits``."""
        return (
            self._db.query(NotificationRecord)
            .filter(
                NotificationRecord.organization_id == organization_id,
                NotificationRecord.recipient_phone == phone_digits,
                NotificationRecord.type.in_(_RESPONDABLE_TYPES),
                NotificationRecord.source_id.is_not(None),
                NotificationRecord.status.in_(
                    [NotificationStatus.pending.value, NotificationStatus.sent.value]
                ),
            )
            .order_by(NotificationRecord.created_at.desc())
            .first()
        )

    def exists_for_date(
        self,
        organization_id: str,
        type: NotificationType,
        recipient_phone: str,
        date: str,
    ) -> bool:
        """True if a sent record of ``type`` went to ``recipient_phone`` on ``date``.

        ``date`` is a YYYY-MM-DD string, matched against the record's
        ``metadata.date``.
        """
        records = (
            self._db.query(NotificationRecord)
            .filter(
                NotificationRecord.organization_id == organization_id,
                NotificationRecord.type == type.value,
                NotificationRecord.recipient_phone == recipient_phone,
                NotificationRecord.status.in_(
                    [NotificationStatus.sent.value, NotificationStatus.responded.value]
                ),
                NotificationRecord.metadata_json.contains(f'"date": "{date}"'),
            )
            .all()
        )
        for record in records:
            if record.metadata_json and json.loads(record.metadata_json).get("date") == date:
                return True
        return False
