"""Tests for the notification ledger."""

import json

import pytest

from fleetwire.db.models import NotificationStatus, NotificationType
from fleetwire.services.notification_service import (
    SYSTEM_RECIPIENT,
    InvalidNotificationTransition,
    NotificationService,
)
from fleetwire.whatsapp.dispatcher import DispatchErrorCode, DispatchResult

PHONE = "27821110001"


@pytest.fixture
def service(db_session) -> NotificationService:
    return NotificationService(db_session)


def _pending(service: NotificationService, **overrides):
    fields = dict(
        organization_id="acme",
        type=NotificationType.trip_assignment,
        recipient_phone=PHONE,
        message="New trip",
        source_type="trip",
        source_id="trip-1",
    )
    fields.update(overrides)
    return service.create(**fields)


class TestCreateAndResolve:
    """Tests for record creation and the status lifecycle."""

    def test_create_pending(self, service):
        record = _pending(service, metadata={"tripId": "trip-1"})
        assert record.id
        assert record.status == NotificationStatus.pending.value
        assert record.sent_at is None
        assert json.loads(record.metadata_json) == {"tripId": "trip-1"}

    def test_create_sent_sets_sent_at(self, service):
        record = service.create("acme", NotificationType.manual, PHONE, "hi", status=NotificationStatus.sent)
        assert record.sent_at is not None

    def test_resolve_success(self, service):
        record = _pending(service)
        service.resolve(record, DispatchResult(success=True, message_id="MSG-9", recipient=PHONE))
        assert record.status == NotificationStatus.sent.value
        assert record.message_id == "MSG-9"
        assert record.sent_at is not None

    def test_resolve_failure(self, service):
        record = _pending(service)
        service.resolve(record, DispatchResult.failure(DispatchErrorCode.TRANSPORT_ERROR, "send failed"))
        assert record.status == NotificationStatus.failed.value
        assert record.error_code == "TRANSPORT_ERROR"
        assert record.error_message == "send failed"

    def test_failed_is_terminal(self, service):
        record = _pending(service)
        service.resolve(record, DispatchResult.failure(DispatchErrorCode.TRANSPORT_ERROR, "x"))
        with pytest.raises(InvalidNotificationTransition):
            service.resolve(record, DispatchResult(success=True, message_id="MSG-1"))

    def test_record_result_uses_normalized_recipient(self, service):
        """The ledger stores the digits the dispatcher actually sent to."""
        record = service.record_result(
            "acme", NotificationType.manual, "+27 82 111 0001", "hi",
            DispatchResult(success=True, message_id="MSG-1", recipient=PHONE),
        )
        assert record.recipient_phone == PHONE
        assert record.status == NotificationStatus.sent.value

    def test_record_failure_sanitizes_message(self, service):
        record = service.record_failure(
            "acme", NotificationType.invoice_reminder, "", "body", "MISSING_PHONE",
            "lookup failed token=abc123",
        )
        assert record.status == NotificationStatus.failed.value
        assert "abc123" not in record.error_message


class TestResponses:
    """Tests for matching inbound replies."""

    def test_mark_responded(self, service):
        record = _pending(service)
        service.resolve(record, DispatchResult(success=True, message_id="MSG-1", recipient=PHONE))

        service.mark_responded(record, {"text": "Confirmed"})

        assert record.status == NotificationStatus.responded.value
        assert record.response_at is not None
        assert json.loads(record.response_data) == {"text": "Confirmed"}

    def test_mark_responded_resolves_pending_first(self, service):
        """A reply racing the ledger write moves pending through sent."""
        record = _pending(service)
        service.mark_responded(record, {"text": "ok"})
        assert record.status == NotificationStatus.responded.value
        assert record.sent_at is not None

    def test_find_open_for_response_skips_manual_and_other_orgs(self, service):
        service.create("acme", NotificationType.manual, PHONE, "hi", status=NotificationStatus.sent)
        service.create("globex", NotificationType.trip_assignment, PHONE, "x",
                       status=NotificationStatus.sent, source_type="trip", source_id="t-2")
        assert service.find_open_for_response("acme", PHONE) is None

        record = _pending(service)
        assert service.find_open_for_response("acme", PHONE).id == record.id


class TestQueries:
    """Tests for counters and lookups."""

    def test_counters_exclude_batch_summaries(self, service):
        _pending(service)
        service.create("acme", NotificationType.manual, PHONE, "hi", status=NotificationStatus.sent)
        service.create("acme", NotificationType.invoice_reminder_batch, SYSTEM_RECIPIENT, "summary",
                       status=NotificationStatus.sent)
        service.create("globex", NotificationType.manual, PHONE, "hi", status=NotificationStatus.sent)

        assert service.get_counters("acme") == {"messagesSent": 1, "queuedMessages": 1}

    def test_list_pending_oldest_first(self, service):
        first = _pending(service, source_id="trip-1")
        second = _pending(service, source_id="trip-2")
        assert [r.id for r in service.list_pending("acme")] == [first.id, second.id]
        assert len(service.list_pending("acme", limit=1)) == 1

    def test_find_for_source(self, service):
        record = _pending(service)
        assert service.find_for_source(NotificationType.trip_assignment, "trip", "trip-1").id == record.id
        assert service.find_for_source(NotificationType.invoice_reminder, "trip", "trip-1") is None

    def test_exists_for_date(self, service):
        service.record_result(
            "acme", NotificationType.daily_summary, PHONE, "summary",
            DispatchResult(success=True, message_id="MSG-1", recipient=PHONE),
            metadata={"date": "2026-10-20"},
        )
        assert service.exists_for_date("acme", NotificationType.daily_summary, PHONE, "2026-10-20")
        assert not service.exists_for_date("acme", NotificationType.daily_summary, PHONE, "2026-10-19")
        assert not service.exists_for_date("acme", NotificationType.daily_summary, "27829999999", "2026-10-20")
