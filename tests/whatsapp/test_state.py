"""Tests for the WhatsApp connection state model."""

import pytest

from fleetwire.whatsapp.state import (
    RESTARTABLE_STATUSES,
    ConnectionState,
    ConnectionStatus,
    can_transition,
)


class TestConnectionState:
    """Tests for ConnectionState snapshots."""

    def test_cold_default(self):
        """A fresh state is disconnected with no payloads."""
        state = ConnectionState()
        assert state.status == ConnectionStatus.disconnected
        assert state.connected is False
        assert state.qr_code is None
        assert state.phone_number is None
        assert state.last_error is None

    def test_qr_code_only_in_qr_ready(self):
        """A QR payload outside qr_ready is rejected."""
        with pytest.raises(ValueError, match="qr_code"):
            ConnectionState(status=ConnectionStatus.connecting, qr_code="2@abc")

    def test_phone_number_only_in_ready(self):
        """A phone number outside ready is rejected."""
        with pytest.raises(ValueError, match="phone_number"):
            ConnectionState(status=ConnectionStatus.authenticated, phone_number="27820000000")

    def test_transition_drops_fields_target_does_not_own(self):
        """Leaving qr_ready clears the QR code."""
        state = ConnectionState(status=ConnectionStatus.qr_ready, qr_code="2@abc")
        nxt = state.transition(ConnectionStatus.authenticated, qr_code="ignored")
        assert nxt.status == ConnectionStatus.authenticated
        assert nxt.qr_code is None

    def test_transition_replaces_or_clears_error(self):
        """last_error is replaced when given and cleared otherwise."""
        failed = ConnectionState().transition(ConnectionStatus.connecting).transition(
            ConnectionStatus.auth_failure, last_error="session revoked"
        )
        assert failed.last_error == "session revoked"
        assert failed.transition(ConnectionStatus.connecting).last_error is None
        assert failed.transition(ConnectionStatus.disconnected, keep_error=True).last_error == "session revoked"

    def test_to_dict(self):
        """to_dict uses camelCase keys and reports connected."""
        state = ConnectionState(status=ConnectionStatus.ready, phone_number="27820000000")
        data = state.to_dict()
        assert data["status"] == "ready"
        assert data["connected"] is True
        assert data["phoneNumber"] == "27820000000"
        assert data["qrCode"] is None
        assert "updatedAt" in data


class TestLifecycleTable:
    """Tests for the transition table."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (ConnectionStatus.disconnected, ConnectionStatus.connecting),
            (ConnectionStatus.connecting, ConnectionStatus.qr_ready),
            (ConnectionStatus.qr_ready, ConnectionStatus.qr_ready),
            (ConnectionStatus.qr_ready, ConnectionStatus.authenticated),
            (ConnectionStatus.authenticated, ConnectionStatus.ready),
            (ConnectionStatus.ready, ConnectionStatus.disconnected),
            (ConnectionStatus.auth_failure, ConnectionStatus.connecting),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (ConnectionStatus.disconnected, ConnectionStatus.ready),
            (ConnectionStatus.connecting, ConnectionStatus.ready),
            (ConnectionStatus.ready, ConnectionStatus.qr_ready),
            (ConnectionStatus.ready, ConnectionStatus.ready),
            (ConnectionStatus.auth_failure, ConnectionStatus.ready),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_restartable_statuses(self):
        """Only disconnected and auth_failure allow a fresh client."""
        assert RESTARTABLE_STATUSES == {ConnectionStatus.disconnected, ConnectionStatus.auth_failure}
