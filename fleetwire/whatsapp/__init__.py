"""WhatsApp connection lifecycle and outbound dispatch."""

from fleetwire.whatsapp.connection_manager import ConnectionManager
from fleetwire.whatsapp.dispatcher import (
    DispatchErrorCode,
    DispatchResult,
    OutboundDispatcher,
    dispatch_with_timeout,
    normalize_phone,
)
from fleetwire.whatsapp.registry import ConnectionRegistry
from fleetwire.whatsapp.session_store import SessionStore, session_id_for
from fleetwire.whatsapp.state import ConnectionState, ConnectionStatus
from fleetwire.whatsapp.transport import (
    InboundMessage,
    TransportError,
    TransportEvent,
    TransportEventKind,
    WhatsAppTransport,
)

__all__ = [
    "ConnectionManager",
    "ConnectionRegistry",
    "ConnectionState",
    "ConnectionStatus",
    "DispatchErrorCode",
    "DispatchResult",
    "InboundMessage",
    "OutboundDispatcher",
    "SessionStore",
    "TransportError",
    "TransportEvent",
    "TransportEventKind",
    "WhatsAppTransport",
    "dispatch_with_timeout",
    "normalize_phone",
    "session_id_for",
]
