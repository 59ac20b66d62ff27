"""Tests for matching inbound replies to notifications."""

import json

from fleetwire.db.models import NotificationStatus, NotificationType
from fleetwire.services.inbound_handler import handle_inbound
from fleetwire.services.notification_service import NotificationService
from fleetwire.whatsapp.dispatcher import DispatchResult
from fleetwire.whatsapp.transport import InboundMessage

DRIVER_PHONE = "27823330003"


def _sent_assignment(db_session, trip_id: str):
    return NotificationService(db_session).record_result(
        "acme", NotificationType.trip_assignment, DRIVER_PHONE, "New trip",
        DispatchResult(success=True, message_id="MSG-1", recipient=DRIVER_PHONE),
        source_type="trip", source_id=trip_id,
    )


class TestHandleInbound:

    async def test_reply_marks_latest_notification(self, db_session, db_context, organization):
        """A driver's reply answers the most recent message sent to them."""
        older = _sent_assignment(db_session, "trip-1")
        latest = _sent_assignment(db_session, "trip-2")

        record_id = await handle_inbound(
            "acme",
            InboundMessage(sender="27823330003@s.whatsapp.net", text="Confirmed", message_id="IN-7",
                           timestamp="2026-10-20T09:30:00+00:00"),
            db_context,
        )

        assert record_id == latest.id
        db_session.refresh(latest)
        db_session.refresh(older)
        assert latest.status == NotificationStatus.responded.value
        assert older.status == NotificationStatus.sent.value
        assert json.loads(latest.response_data) == {
            "text": "Confirmed",
            "messageId": "IN-7",
            "receivedAt": "2026-10-20T09:30:00+00:00",
        }

    async def test_unparseable_sender(self, db_context):
        assert await handle_inbound("acme", InboundMessage(sender="status@broadcast", text="hi"), db_context) is None

    async def test_no_open_notification(self, db_session, db_context, organization):
        _sent_assignment(db_session, "trip-1")
        message = InboundMessage(sender="27829999999", text="Who is this?")
        assert await handle_inbound("acme", message, db_context) is None

    async def test_other_organization_not_matched(self, db_session, db_context, organization):
        _sent_assignment(db_session, "trip-1")
        message = InboundMessage(sender=DRIVER_PHONE, text="ok")
        assert await handle_inbound("globex", message, db_context) is None
