"""Process-wide owner of one ConnectionManager per organization."""

import logging
from collections.abc import Callable

from fleetwire.whatsapp.connection_manager import ConnectionManager, MessageHandler
from fleetwire.whatsapp.session_store import SessionStore
from fleetwire.whatsapp.state import ConnectionState
from fleetwire.whatsapp.transport import TransportFactory

logger = logging.getLogger(__name__)

# (organization_id, previous, current) -> None
RegistryListener = Callable[[str, ConnectionState, ConnectionState], None]


def _default_transport_factory() -> TransportFactory:
    from fleetwire.whatsapp.neonize_transport import create_neonize_transport

    return create_neonize_transport


class ConnectionRegistry:
    """Lazily creates and tracks connection managers keyed by organization id.

    Listeners registered here are attached to every manager, including
    managers created after the listener was added.
    """

    def __init__(
        self,
        session_store: SessionStore,
        transport_factory: TransportFactory | None = None,
        on_message: MessageHandler | None = None,
    ) -> None:
        self._session_store = session_store
        self._transport_factory = transport_factory
        self._on_message = on_message
        self._managers: dict[str, ConnectionManager] = {}
        self._listeners: list[RegistryListener] = []

    @property
    def session_store(self) -> SessionStore:
        return self._session_store

    def set_message_handler(self, handler: MessageHandler) -> None:
        """Set the inbound handler for managers created from now on."""
        self._on_message = handler

    def get(self, organization_id: str) -> ConnectionManager | None:
        return self._managers.get(organization_id)

    def get_or_create(self, organization_id: str) -> ConnectionManager:
        manager = self._managers.get(organization_id)
        if manager is not None:
            return manager

        if self._transport_factory is None:
            self._transport_factory = _default_transport_factory()
        manager = ConnectionManager(
            organization_id=organization_id,
            transport_factory=self._transport_factory,
            session_store=self._session_store,
            on_message=self._on_message,
        )
        for listener in self._listeners:
            self._attach(manager, listener)
        self._managers[organization_id] = manager
        logger.debug("Created connection manager for %s", organization_id)
        return manager

    def get_state(self, organization_id: str) -> ConnectionState:
        """Return the organization's snapshot, or a cold default if unknown."""
        manager = self._managers.get(organization_id)
        if manager is None:
            return ConnectionState()
        return manager.get_state()

    def subscribe(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)
        for manager in self._managers.values():
            self._attach(manager, listener)

    @staticmethod
    def _attach(manager: ConnectionManager, listener: RegistryListener) -> None:
        org_id = manager.organization_id
        manager.subscribe(lambda previous, current: listener(org_id, previous, current))

    def organizations(self) -> list[str]:
        return list(self._managers)

    async def shutdown(self) -> None:
        """Stop every client, keeping stored credentials."""
        for organization_id, manager in list(self._managers.items()):
            try:
                await manager.shutdown()
            except Exception as e:
                logger.warning("Shutdown of WhatsApp client for %s raised: %s", organization_id, e)
