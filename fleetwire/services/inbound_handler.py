"""Match inbound WhatsApp replies to the notification they answer."""

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from fleetwire.db.connection import get_db_context
from fleetwire.services.notification_service import NotificationService
from fleetwire.utils.redaction import mask_phone
from fleetwire.whatsapp.dispatcher import normalize_phone
from fleetwire.whatsapp.transport import InboundMessage

logger = logging.getLogger(__name__)

DbContextFactory = Callable[[], AbstractContextManager[Session]]


async def handle_inbound(
    organization_id: str,
    message: InboundMessage,
    db_context: DbContextFactory = get_db_context,
) -> str | None:
    """Mark the most recent open notification to the sender as responded.

    Returns:
        The id of the updated notification record, or None if the message
        did not answer anything.
    """
    try:
        sender = normalize_phone(message.sender)
    except ValueError:
        logger.debug("Ignoring inbound message from unparseable sender for %s", organization_id)
        return None

    with db_context() as db:
        notifications = NotificationService(db)
        record = notifications.find_open_for_response(organization_id, sender)
        if record is None:
            logger.debug("Inbound message from %s matches no open notification", mask_phone(sender))
            return None

        received_at = message.timestamp or datetime.now(UTC).isoformat()
        notifications.mark_responded(
            record,
            {"text": message.text, "messageId": message.message_id, "receivedAt": received_at},
        )
        logger.info(
            "Notification %s (%s) answered by %s", record.id, record.type, mask_phone(sender)
        )
        return record.id
