"""Connection state model for a WhatsApp session.

Lifecycle: disconnected -> connecting -> qr_ready -> authenticated -> ready
           any non-terminal state -> disconnected | auth_failure

``ConnectionState`` is an immutable snapshot. The connection manager swaps
whole snapshots on every transition, so readers never observe a
half-applied update.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum


class ConnectionStatus(str, Enum):
    """Status values for a WhatsApp connection."""

    disconnected = "disconnected"
    connecting = "connecting"
    qr_ready = "qr_ready"
    authenticated = "authenticated"
    ready = "ready"
    auth_failure = "auth_failure"


# Table-driven lifecycle; an event whose target is not listed is ignored.
VALID_TRANSITIONS: dict[ConnectionStatus, list[ConnectionStatus]] = {
    ConnectionStatus.disconnected: [ConnectionStatus.connecting],
    ConnectionStatus.connecting: [
        ConnectionStatus.qr_ready,
        ConnectionStatus.authenticated,
        ConnectionStatus.disconnected,
        ConnectionStatus.auth_failure,
    ],
    ConnectionStatus.qr_ready: [
        ConnectionStatus.qr_ready,  # QR refresh
        ConnectionStatus.authenticated,
        ConnectionStatus.disconnected,
        ConnectionStatus.auth_failure,
    ],
    ConnectionStatus.authenticated: [
        ConnectionStatus.ready,
        ConnectionStatus.disconnected,
        ConnectionStatus.auth_failure,
    ],
    ConnectionStatus.ready: [
        ConnectionStatus.disconnected,
        ConnectionStatus.auth_failure,
    ],
    ConnectionStatus.auth_failure: [
        ConnectionStatus.connecting,  # operator re-initialize
        ConnectionStatus.disconnected,
    ],
}

# States from which initialize() may construct a fresh client
RESTARTABLE_STATUSES = frozenset({ConnectionStatus.disconnected, ConnectionStatus.auth_failure})


def can_transition(current: ConnectionStatus, target: ConnectionStatus) -> bool:
    """Return True if the lifecycle table allows current -> target."""
    return target in VALID_TRANSITIONS.get(current, [])


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ConnectionState:
    """Point-in-time view of one organization's WhatsApp connection.

    Attributes:
        status: Current lifecycle status.
        qr_code: Pairing payload to render as a QR image; only in qr_ready.
        phone_number: Paired account's number; only while ready.
        last_error: Diagnostic from the most recent failure, if any.
        updated_at: ISO8601 time of the last transition.
    """

    status: ConnectionStatus = ConnectionStatus.disconnected
    qr_code: str | None = None
    phone_number: str | None = None
    last_error: str | None = None
    updated_at: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        if self.qr_code is not None and self.status != ConnectionStatus.qr_ready:
            raise ValueError(f"qr_code is only valid in qr_ready (status={self.status.value})")
        if self.phone_number is not None and self.status != ConnectionStatus.ready:
            raise ValueError(f"phone_number is only valid in ready (status={self.status.value})")

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.ready

    def transition(
        self,
        status: ConnectionStatus,
        *,
        qr_code: str | None = None,
        phone_number: str | None = None,
        last_error: str | None = None,
        keep_error: bool = False,
    ) -> "ConnectionState":
        """Return the snapshot for ``status``, clearing fields it must not carry.

        ``qr_code`` and ``phone_number`` are dropped unless the target status
        owns them. ``last_error`` is replaced when given, otherwise kept only
        if ``keep_error`` is set.
        """
        return replace(
            self,
            status=status,
            qr_code=qr_code if status == ConnectionStatus.qr_ready else None,
            phone_number=phone_number if status == ConnectionStatus.ready else None,
            last_error=last_error if last_error is not None else (self.last_error if keep_error else None),
            updated_at=_now_iso(),
        )

    def to_dict(self) -> dict:
        """Serialize for the status endpoint and state-change subscribers."""
        return {
            "status": self.status.value,
            "connected": self.connected,
            "qrCode": self.qr_code,
            "phoneNumber": self.phone_number,
            "lastError": self.last_error,
            "updatedAt": self.updated_at,
        }
