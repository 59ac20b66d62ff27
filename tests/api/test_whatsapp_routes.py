"""Tests for the WhatsApp connection and send endpoints."""

import pytest
from fastapi.testclient import TestClient

from fleetwire.cli.config import FleetwireConfig
from fleetwire.db.models import NotificationRecord, NotificationType
from tests.helpers.fake_transport import DEFAULT_ACCOUNT


class TestStatus:

    def test_cold_organization_reports_defaults(self, client: TestClient):
        """Status never fails for an organization that was never initialized."""
        response = client.get("/api/v1/whatsapp/status", params={"organizationId": "globex"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "status": "disconnected",
            "connected": False,
            "phoneNumber": None,
            "qrCode": None,
            "messagesSent": 0,
            "queuedMessages": 0,
            "lastError": None,
        }

    def test_qr_code_exposed_while_pairing(self, client: TestClient, transport_factory):
        client.post("/api/v1/whatsapp/initialize", json={"organizationId": "acme"})
        transport_factory.last.emit_qr("2@scan-me")

        data = client.get("/api/v1/whatsapp/status").json()

        assert data["status"] == "qr_ready"
        assert data["qrCode"] == "2@scan-me"
        assert data["connected"] is False

    def test_ready_status(self, ready_client: TestClient):
        data = ready_client.get("/api/v1/whatsapp/status").json()
        assert data["status"] == "ready"
        assert data["connected"] is True
        assert data["phoneNumber"] == DEFAULT_ACCOUNT
        assert data["qrCode"] is None

    def test_missing_organization(self, client: TestClient, api_config: FleetwireConfig):
        api_config.server.default_organization = None

        response = client.get("/api/v1/whatsapp/status")

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "organizationId is required" in response.json()["error"]["message"]


class TestInitializeAndDisconnect:

    def test_initialize_then_conflict(self, client: TestClient):
        first = client.post("/api/v1/whatsapp/initialize", json={})
        second = client.post("/api/v1/whatsapp/initialize", json={})

        assert first.status_code == 200
        assert first.json() == {"success": True, "status": "connecting"}
        assert second.status_code == 409
        assert second.json()["status"] == "connecting"

    def test_initialize_setup_failure(self, client: TestClient, transport_factory):
        transport_factory.fail_with = RuntimeError("browser missing")

        response = client.post("/api/v1/whatsapp/initialize", json={})

        assert response.status_code == 500
        assert response.json()["status"] == "disconnected"
        assert "client setup failed" in response.json()["error"]

    def test_disconnect(self, ready_client: TestClient, transport_factory):
        response = ready_client.post("/api/v1/whatsapp/disconnect", json={})

        assert response.status_code == 200
        assert response.json() == {"success": True, "status": "disconnected"}
        assert transport_factory.last.stopped is True
        assert transport_factory.last.logged_out is False

    def test_disconnect_with_logout(self, ready_client: TestClient, transport_factory, session_store):
        response = ready_client.post("/api/v1/whatsapp/disconnect", json={"logout": True})

        assert response.status_code == 200
        assert transport_factory.last.logged_out is True
        assert not session_store.has_credentials("org-acme")

    def test_disconnect_cold_organization(self, client: TestClient):
        response = client.post("/api/v1/whatsapp/disconnect", json={"organizationId": "globex"})
        assert response.json() == {"success": True, "status": "disconnected"}


class TestSend:

    def test_invalid_phone(self, ready_client: TestClient):
        response = ready_client.post(
            "/api/v1/whatsapp/send", json={"phoneNumber": "12-34", "message": "hello"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_empty_message(self, ready_client: TestClient):
        response = ready_client.post(
            "/api/v1/whatsapp/send", json={"phoneNumber": "27821110001", "message": ""}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_whitespace_message_rejected_before_dispatch(self, client: TestClient, db_session):
        """Blank text is a validation error even while the client is not ready."""
        response = client.post(
            "/api/v1/whatsapp/send", json={"phoneNumber": "27821110001", "message": "   \n\t"}
        )

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Message must be between 1 and 4096 characters.",
            },
        }
        assert db_session.query(NotificationRecord).count() == 0

    def test_not_ready(self, client: TestClient):
        response = client.post(
            "/api/v1/whatsapp/send", json={"phoneNumber": "27821110001", "message": "hello"}
        )
        assert response.status_code == 503
        assert response.json()["errorCode"] == "NOT_READY"

    def test_success(self, ready_client: TestClient, transport_factory, db_session):
        response = ready_client.post(
            "/api/v1/whatsapp/send",
            json={"phoneNumber": "+27 82 111 0001", "message": "Gate code is 4411"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "messageId": "MSG-1"}
        assert transport_factory.last.sent == [("27821110001@s.whatsapp.net", "Gate code is 4411")]
        assert ready_client.get("/api/v1/whatsapp/status").json()["messagesSent"] == 1

    def test_recipient_not_on_whatsapp(self, ready_client: TestClient, transport_factory):
        transport_factory.last.unregistered.add("27821110001")

        response = ready_client.post(
            "/api/v1/whatsapp/send", json={"phoneNumber": "27821110001", "message": "hello"}
        )

        assert response.status_code == 422
        assert response.json()["errorCode"] == "RECIPIENT_UNAVAILABLE"

    def test_transport_error(self, ready_client: TestClient, transport_factory):
        transport_factory.last.send_error = RuntimeError("socket closed")

        response = ready_client.post(
            "/api/v1/whatsapp/send", json={"phoneNumber": "27821110001", "message": "hello"}
        )

        assert response.status_code == 502
        assert response.json()["errorCode"] == "TRANSPORT_ERROR"


class TestTemplates:

    def test_invoice_reminder_template(self, ready_client: TestClient, transport_factory, db_session):
        response = ready_client.post(
            "/api/v1/whatsapp/template/invoice-reminder",
            json={
                "phoneNumber": "27821110001",
                "data": {
                    "customerName": "Karoo Farms",
                    "invoiceNumber": "INV-1001",
                    "totalCents": 125000,
                    "dueDate": "2026-10-10",
                    "organizationName": "Acme Haulage",
                },
            },
        )

        assert response.status_code == 200
        text = transport_factory.last.sent_texts[0]
        assert "Invoice #: INV-1001" in text
        assert "Amount: $1,250.00" in text
        record = db_session.query(NotificationRecord).one()
        assert record.type == NotificationType.invoice_reminder.value

    def test_trip_assignment_template(self, ready_client: TestClient, transport_factory):
        response = ready_client.post(
            "/api/v1/whatsapp/template/trip-assignment",
            json={
                "phoneNumber": "27823330003",
                "data": {
                    "driverName": "Sipho",
                    "originCity": "Johannesburg",
                    "destinationCity": "Durban",
                    "scheduledDate": "2026-10-21",
                },
            },
        )

        assert response.status_code == 200
        assert "*Route:* Johannesburg to Durban" in transport_factory.last.sent_texts[0]

    @pytest.mark.parametrize("due_date", ["2026-13-45", "10/10/2026"])
    def test_invalid_due_date(self, ready_client: TestClient, transport_factory, due_date):
        response = ready_client.post(
            "/api/v1/whatsapp/template/invoice-reminder",
            json={
                "phoneNumber": "27821110001",
                "data": {
                    "customerName": "Karoo Farms",
                    "invoiceNumber": "INV-1001",
                    "totalCents": 125000,
                    "dueDate": due_date,
                },
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert transport_factory.last.sent == []

    def test_missing_template_field(self, ready_client: TestClient):
        response = ready_client.post(
            "/api/v1/whatsapp/template/trip-assignment",
            json={"phoneNumber": "27823330003", "data": {"driverName": "Sipho"}},
        )
        assert response.status_code == 400
