"""Tests for the health, readiness and error handler wiring in api.main."""

import logging

from fastapi.testclient import TestClient

from fleetwire import __version__
from fleetwire.api.main import _auto_initialize, _parse_allowed_origins
from fleetwire.whatsapp.state import ConnectionStatus


def test_health(client: TestClient):
    data = client.get("/health").json()

    assert data["status"] == "healthy"
    assert data["version"] == __version__
    assert data["uptime_seconds"] >= 0
    assert data["whatsapp_clients"] == 0


def test_readyz_reports_checks(client: TestClient, monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)

    response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == {"status": "ok"}
    assert data["checks"]["whatsapp"]["status"] == "ok"
    assert data["checks"]["cron_secret"]["status"] == "degraded"


def test_readyz_cron_secret_configured(client: TestClient, monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret")
    assert client.get("/readyz").json()["checks"]["cron_secret"] == {"status": "configured"}


def test_malformed_body_is_validation_error(client: TestClient):
    response = client.post("/api/v1/whatsapp/send", json={"message": "hello"})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": {"code": "VALIDATION_ERROR", "message": "phoneNumber: Field required"},
    }


def test_parse_allowed_origins(monkeypatch):
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://dash.example.com, http://localhost:3000,")
    assert _parse_allowed_origins() == ["https://dash.example.com", "http://localhost:3000"]

    monkeypatch.delenv("ALLOWED_ORIGINS")
    assert _parse_allowed_origins() == []


async def test_auto_initialize_default_organization_needs_pairing(registry, transport_factory, caplog):
    caplog.set_level(logging.INFO, logger="fleetwire.api.main")

    await _auto_initialize(registry, "acme")

    assert registry.get_state("acme").status == ConnectionStatus.connecting
    assert len(transport_factory.created) == 1
    assert "No stored WhatsApp session for acme" in caplog.text


async def test_auto_initialize_resumes_stored_session(registry, session_store, transport_factory, caplog):
    caplog.set_level(logging.INFO, logger="fleetwire.api.main")
    session_dir = session_store.session_path("org-acme")
    (session_dir / "device.db").write_bytes(b"paired")

    await _auto_initialize(registry, "acme")

    assert registry.get_state("acme").status == ConnectionStatus.connecting
    assert "No stored WhatsApp session" not in caplog.text


async def test_auto_initialize_without_default_organization(registry, transport_factory):
    await _auto_initialize(registry, None)
    assert transport_factory.created == []
