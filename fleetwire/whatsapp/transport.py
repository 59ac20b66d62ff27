"""Transport boundary between Fleetwire and a WhatsApp Web client library.

The connection manager drives the lifecycle; a transport only wraps one
client instance and reports what happens to it as ``TransportEvent``s.
Handlers are always invoked on the event loop thread, so adapters for
libraries with their own threads must marshal events across.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class TransportEventKind(str, Enum):
    """Events a transport reports to its owner."""

    qr = "qr"
    authenticated = "authenticated"
    ready = "ready"
    disconnected = "disconnected"
    auth_failure = "auth_failure"
    message = "message"


@dataclass(frozen=True)
class InboundMessage:
    """A message received from a WhatsApp user.

    Attributes:
        sender: Sender's phone number, digits only.
        text: Message body (empty for media without caption).
        message_id: Provider message id.
        timestamp: ISO8601 receive time, if the provider supplied one.
    """

    sender: str
    text: str
    message_id: str | None = None
    timestamp: str | None = None


@dataclass(frozen=True)
class TransportEvent:
    """Lifecycle or message event emitted by a transport."""

    kind: TransportEventKind
    qr_code: str | None = None
    phone_number: str | None = None
    reason: str | None = None
    message: InboundMessage | None = None


EventHandler = Callable[[TransportEvent], None]


class TransportError(Exception):
    """Raised by a transport when the provider rejects or fails an operation."""


class WhatsAppTransport(ABC):
    """One WhatsApp Web client bound to a session working directory."""

    # Suffix the provider expects on user addresses
    address_suffix = "@s.whatsapp.net"

    @abstractmethod
    async def start(self) -> None:
        """Begin connecting. Returns once the client is launched.

        Pairing progress arrives later as events. Raising here means the
        client could not be launched at all.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and release the client. Keeps stored credentials."""

    @abstractmethod
    async def logout(self) -> None:
        """Unlink the device from the paired account."""

    @abstractmethod
    async def is_registered(self, address: str) -> bool:
        """Return True if ``address`` belongs to a WhatsApp account."""

    @abstractmethod
    async def send_text(self, address: str, text: str) -> str:
        """Send a plain-text message and return the provider message id.

        Raises:
            TransportError: If the provider rejects or fails the send.
        """


# (session_id, session working directory, event handler) -> transport
TransportFactory = Callable[[str, Path, EventHandler], WhatsAppTransport]
