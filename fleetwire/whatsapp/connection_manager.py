"""Connection lifecycle for one organization's WhatsApp session.

The manager owns at most one transport at a time and is the only writer of
the organization's ``ConnectionState``. Transport events are applied
through the lifecycle table in ``whatsapp.state``; events that do not fit
the table are logged and dropped.

Every transport is tagged with a generation number. Tearing a transport
down bumps the generation, so late events from a stopped client can never
overwrite the state of its replacement.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from fleetwire.utils.redaction import mask_phone, sanitize_error_message
from fleetwire.whatsapp.session_store import SessionStore, session_id_for
from fleetwire.whatsapp.state import (
    RESTARTABLE_STATUSES,
    ConnectionState,
    ConnectionStatus,
    can_transition,
)
from fleetwire.whatsapp.transport import (
    InboundMessage,
    TransportError,
    TransportEvent,
    TransportEventKind,
    TransportFactory,
    WhatsAppTransport,
)

logger = logging.getLogger(__name__)

# (previous, current) -> None; called on the event loop after every transition
StateListener = Callable[[ConnectionState, ConnectionState], None]
MessageHandler = Callable[[str, InboundMessage], Awaitable[None]]


class ConnectionManager:
    """Drives the WhatsApp connection state machine for one organization.

    Args:
        organization_id: Tenant that owns the session.
        transport_factory: Builds a transport for a session working directory.
        session_store: Credential persistence.
        on_message: Coroutine called for every inbound message.
    """

    def __init__(
        self,
        organization_id: str,
        transport_factory: TransportFactory,
        session_store: SessionStore,
        on_message: MessageHandler | None = None,
    ) -> None:
        self.organization_id = organization_id
        self.session_id = session_id_for(organization_id)
        self._transport_factory = transport_factory
        self._session_store = session_store
        self._on_message = on_message

        self._state = ConnectionState()
        self._transport: WhatsAppTransport | None = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._listeners: list[StateListener] = []
        self._background: set[asyncio.Task] = set()

    # --- Read side ---

    def get_state(self) -> ConnectionState:
        """Return the current snapshot. Never blocks."""
        return self._state

    def ready_transport(self) -> WhatsAppTransport | None:
        """Return the live transport only while the connection is ready."""
        if self._state.status == ConnectionStatus.ready:
            return self._transport
        return None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state-change listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # --- Lifecycle ---

    async def initialize(self) -> bool:
        """Start connecting if no client is active.

        Returns immediately; pairing progress is visible through
        get_state(). Concurrent calls construct at most one client.

        Returns:
            True if a new client was launched, False if one is already
            connecting or connected.
        """
        async with self._lock:
            if self._transport is not None and self._state.status not in RESTARTABLE_STATUSES:
                logger.info(
                    "WhatsApp client for %s already active (status=%s), initialize ignored",
                    self.organization_id, self._state.status.value,
                )
                return False

            if self._transport is not None:
                await self._teardown_locked()

            self._generation += 1
            generation = self._generation
            try:
                self._session_store.restore(self.session_id)
                session_path = self._session_store.session_path(self.session_id)
                transport = self._transport_factory(
                    self.session_id,
                    session_path,
                    lambda event: self._handle_event(generation, event),
                )
            except Exception as e:
                logger.error(
                    "Could not create WhatsApp client for %s: %s",
                    self.organization_id, e, exc_info=True,
                )
                self._set_state(self._state.transition(
                    ConnectionStatus.disconnected,
                    last_error=sanitize_error_message(f"client setup failed: {e}"),
                ))
                return False

            self._transport = transport
            self._set_state(self._state.transition(ConnectionStatus.connecting))
            self._spawn(self._start_transport(generation, transport))
            logger.info("WhatsApp client launching for %s", self.organization_id)
            return True

    async def _start_transport(self, generation: int, transport: WhatsAppTransport) -> None:
        try:
            await transport.start()
        except Exception as e:
            logger.error(
                "WhatsApp client for %s failed to start: %s",
                self.organization_id, e, exc_info=True,
            )
            if generation == self._generation:
                self._transport = None
                self._generation += 1
                self._set_state(self._state.transition(
                    ConnectionStatus.disconnected,
                    last_error=sanitize_error_message(f"client start failed: {e}"),
                ))

    async def disconnect(self, logout: bool = False) -> ConnectionState:
        """Tear down the client and move to disconnected.

        Args:
            logout: Also unlink the device and delete stored credentials,
                so the next initialize requires a fresh QR scan.

        Returns:
            The resulting state snapshot.
        """
        async with self._lock:
            transport = self._transport
            if logout and transport is not None:
                try:
                    await transport.logout()
                except TransportError as e:
                    logger.warning("Logout for %s failed, deleting local credentials anyway: %s",
                                   self.organization_id, e)
            await self._teardown_locked()
            if logout:
                self._session_store.delete(self.session_id)
            if self._state.status != ConnectionStatus.disconnected:
                self._set_state(self._state.transition(ConnectionStatus.disconnected))
            logger.info("WhatsApp client for %s disconnected (logout=%s)", self.organization_id, logout)
            return self._state

    async def shutdown(self) -> None:
        """Stop the client at process exit, keeping stored credentials."""
        await self.disconnect(logout=False)
        for task in list(self._background):
            task.cancel()

    async def _teardown_locked(self) -> None:
        transport = self._transport
        self._transport = None
        self._generation += 1
        if transport is None:
            return
        try:
            await transport.stop()
        except Exception as e:
            logger.warning("Stopping WhatsApp client for %s raised: %s", self.organization_id, e)

    # --- Event handling ---

    def _handle_event(self, generation: int, event: TransportEvent) -> None:
        if generation != self._generation:
            logger.debug("Ignoring %s event from a retired client for %s", event.kind.value, self.organization_id)
            return

        if event.kind == TransportEventKind.message:
            if event.message is not None and self._on_message is not None:
                self._spawn(self._dispatch_inbound(event.message))
            return

        current = self._state.status
        if event.kind == TransportEventKind.qr:
            self._apply(ConnectionStatus.qr_ready, qr_code=event.qr_code)
        elif event.kind == TransportEventKind.authenticated:
            if self._apply(ConnectionStatus.authenticated):
                self._persist_credentials()
        elif event.kind == TransportEventKind.ready:
            if current in (ConnectionStatus.connecting, ConnectionStatus.qr_ready):
                # Stored credentials resumed without a pairing step
                self._apply(ConnectionStatus.authenticated)
            if self._apply(ConnectionStatus.ready, phone_number=event.phone_number):
                logger.info("WhatsApp ready for %s as %s", self.organization_id, mask_phone(event.phone_number))
                self._persist_credentials(event.phone_number)
        elif event.kind == TransportEventKind.disconnected:
            if self._apply(ConnectionStatus.disconnected, last_error=event.reason):
                self._retire_transport()
        elif event.kind == TransportEventKind.auth_failure:
            reason = event.reason or "authentication failed"
            if self._apply(ConnectionStatus.auth_failure, last_error=reason):
                logger.warning("WhatsApp authentication failed for %s: %s", self.organization_id, reason)
                self._retire_transport()

    def _apply(self, target: ConnectionStatus, **fields: str | None) -> bool:
        current = self._state.status
        if not can_transition(current, target):
            logger.info(
                "Ignoring WhatsApp transition %s -> %s for %s",
                current.value, target.value, self.organization_id,
            )
            return False
        self._set_state(self._state.transition(target, **fields))
        return True

    def _retire_transport(self) -> None:
        """Drop the transport reference after a drop or auth failure."""
        transport = self._transport
        self._transport = None
        self._generation += 1
        if transport is not None:
            self._spawn(self._stop_quietly(transport))

    async def _stop_quietly(self, transport: WhatsAppTransport) -> None:
        try:
            await transport.stop()
        except Exception as e:
            logger.debug("Stopping retired client for %s raised: %s", self.organization_id, e)

    def _persist_credentials(self, phone_number: str | None = None) -> None:
        self._spawn(self._persist_in_thread(phone_number))

    async def _persist_in_thread(self, phone_number: str | None) -> None:
        # Packing and sealing the session directory is blocking file and DB work
        try:
            await asyncio.to_thread(
                self._session_store.persist, self.session_id, self.organization_id, phone_number
            )
        except Exception as e:
            logger.error("Could not persist WhatsApp credentials for %s: %s", self.organization_id, e)

    async def _dispatch_inbound(self, message: InboundMessage) -> None:
        try:
            await self._on_message(self.organization_id, message)
        except Exception:
            logger.exception("Inbound message handler failed for %s", self.organization_id)

    def _set_state(self, new_state: ConnectionState) -> None:
        previous = self._state
        self._state = new_state
        if previous.status != new_state.status:
            logger.info(
                "WhatsApp %s: %s -> %s",
                self.organization_id, previous.status.value, new_state.status.value,
            )
        for listener in list(self._listeners):
            try:
                listener(previous, new_state)
            except Exception:
                logger.exception("State listener failed for %s", self.organization_id)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
