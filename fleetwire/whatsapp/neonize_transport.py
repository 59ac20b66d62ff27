"""WhatsApp transport backed by neonize (Python bindings for whatsmeow).

neonize runs its connection loop on a native thread and calls back from
there. ``connect()`` blocks for the lifetime of the connection, so it runs
in the default executor, and every callback is re-posted onto the asyncio
loop with ``call_soon_threadsafe`` before reaching the connection manager.

neonize is an optional dependency (``pip install fleetwire[whatsapp]``); it
is imported when a transport is constructed, not at module import.
"""

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path

from fleetwire.utils.redaction import mask_phone
from fleetwire.whatsapp.transport import (
    EventHandler,
    InboundMessage,
    TransportError,
    TransportEvent,
    TransportEventKind,
    WhatsAppTransport,
)

logger = logging.getLogger(__name__)

DB_FILENAME = "neonize.sqlite3"


def _user_part(address: str) -> str:
    return address.split("@", 1)[0]


class NeonizeTransport(WhatsAppTransport):
    """neonize client for one session working directory."""

    def __init__(self, session_id: str, session_path: Path, on_event: EventHandler) -> None:
        from neonize.client import NewClient

        self._session_id = session_id
        self._session_path = session_path
        self._on_event = on_event
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connect_future: asyncio.Future | None = None
        self._stopping = False

        session_path.mkdir(parents=True, exist_ok=True)
        self._client = NewClient(str(session_path / DB_FILENAME))
        self._register_callbacks()

    def _emit(self, event: TransportEvent) -> None:
        """Post an event from a neonize thread onto the asyncio loop."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._on_event, event)

    def _register_callbacks(self) -> None:
        from neonize.events import (
            ConnectedEv,
            ConnectFailureEv,
            DisconnectedEv,
            LoggedOutEv,
            MessageEv,
            PairStatusEv,
        )

        client = self._client

        @client.qr
        def _on_qr(_client, data_qr: bytes) -> None:
            self._emit(TransportEvent(
                kind=TransportEventKind.qr,
                qr_code=data_qr.decode("utf-8", errors="replace"),
            ))

        @client.event(PairStatusEv)
        def _on_pair(_client, event: PairStatusEv) -> None:
            logger.info("Session %s paired with %s", self._session_id, mask_phone(event.ID.User))
            self._emit(TransportEvent(kind=TransportEventKind.authenticated))

        @client.event(ConnectedEv)
        def _on_connected(_client, _event: ConnectedEv) -> None:
            phone = None
            try:
                phone = _client.get_me().JID.User or None
            except Exception as e:
                logger.warning("Session %s connected but device info unavailable: %s", self._session_id, e)
            self._emit(TransportEvent(kind=TransportEventKind.ready, phone_number=phone))

        @client.event(LoggedOutEv)
        def _on_logged_out(_client, event: LoggedOutEv) -> None:
            self._emit(TransportEvent(
                kind=TransportEventKind.auth_failure,
                reason=f"logged out by server (reason={event.Reason})",
            ))

        @client.event(ConnectFailureEv)
        def _on_connect_failure(_client, event: ConnectFailureEv) -> None:
            self._emit(TransportEvent(
                kind=TransportEventKind.auth_failure,
                reason=f"connect failure (reason={event.Reason}) {event.Message}".strip(),
            ))

        @client.event(DisconnectedEv)
        def _on_disconnected(_client, _event: DisconnectedEv) -> None:
            if not self._stopping:
                self._emit(TransportEvent(kind=TransportEventKind.disconnected, reason="connection lost"))

        @client.event(MessageEv)
        def _on_message(_client, event: MessageEv) -> None:
            info = event.Info
            if info.MessageSource.IsFromMe or info.MessageSource.IsGroup:
                return
            msg = event.Message
            text = msg.conversation or msg.extendedTextMessage.text or ""
            timestamp = None
            if info.Timestamp:
                timestamp = datetime.fromtimestamp(info.Timestamp, UTC).isoformat()
            self._emit(TransportEvent(
                kind=TransportEventKind.message,
                message=InboundMessage(
                    sender=info.MessageSource.Sender.User,
                    text=text,
                    message_id=info.ID or None,
                    timestamp=timestamp,
                ),
            ))

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        self._connect_future = self._loop.run_in_executor(None, self._client.connect)
        self._connect_future.add_done_callback(self._on_connect_returned)

    def _on_connect_returned(self, future: asyncio.Future) -> None:
        if future.cancelled() or self._stopping:
            return
        exc = future.exception()
        reason = f"client loop exited: {exc}" if exc else "client loop exited"
        self._on_event(TransportEvent(kind=TransportEventKind.disconnected, reason=reason))

    async def stop(self) -> None:
        self._stopping = True
        try:
            await asyncio.to_thread(self._client.disconnect)
        except Exception as e:
            logger.warning("Session %s disconnect raised: %s", self._session_id, e)

    async def logout(self) -> None:
        self._stopping = True
        try:
            await asyncio.to_thread(self._client.logout)
        except Exception as e:
            raise TransportError(f"logout failed: {e}") from e

    async def is_registered(self, address: str) -> bool:
        try:
            results = await asyncio.to_thread(self._client.is_on_whatsapp, _user_part(address))
        except Exception as e:
            raise TransportError(f"registration lookup failed: {e}") from e
        return any(getattr(r, "IsIn", False) for r in results)

    async def send_text(self, address: str, text: str) -> str:
        from neonize.utils import build_jid

        try:
            response = await asyncio.to_thread(
                self._client.send_message, build_jid(_user_part(address)), text
            )
        except Exception as e:
            raise TransportError(str(e)) from e
        return response.ID


def create_neonize_transport(
    session_id: str, session_path: Path, on_event: EventHandler
) -> WhatsAppTransport:
    """Default TransportFactory."""
    return NeonizeTransport(session_id, session_path, on_event)
