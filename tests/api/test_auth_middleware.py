"""Tests for optional API-key auth middleware behavior.

Includes rate limiting and key strength validation.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import fleetwire.api.middleware.auth as auth_mod
from fleetwire.api.middleware.auth import (
    _AUTH_FAIL_MAX,
    _get_client_ip,
    reset_rate_limiter,
    should_authenticate,
    validate_api_key_strength,
)

API_KEY = "a" * 32 + "-test-key"
STATUS_URL = "/api/v1/whatsapp/status"


def test_api_auth_disabled_by_default(client: TestClient, monkeypatch):
    monkeypatch.delenv("FLEETWIRE_API_KEY", raising=False)

    response = client.get(STATUS_URL)
    assert response.status_code == 200


def test_api_auth_enforced_when_key_is_set(client: TestClient, monkeypatch):
    monkeypatch.setenv("FLEETWIRE_API_KEY", API_KEY)

    response = client.get(STATUS_URL)
    assert response.status_code == 401

    response = client.get(STATUS_URL, headers={"X-API-Key": "wrong"})
    assert response.status_code == 401

    response = client.get(STATUS_URL, headers={"X-API-Key": API_KEY})
    assert response.status_code == 200


def test_health_and_readyz_are_public(client: TestClient, monkeypatch):
    monkeypatch.setenv("FLEETWIRE_API_KEY", API_KEY)

    assert client.get("/health").status_code == 200
    assert client.get("/readyz").status_code in {200, 503}


def test_cors_preflight_passes(client: TestClient, monkeypatch):
    monkeypatch.setenv("FLEETWIRE_API_KEY", API_KEY)
    response = client.options(STATUS_URL)
    assert response.status_code != 401


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api/v1/whatsapp/send", True),
        ("/api/v1/cron/invoice-reminders", True),
        ("/health", False),
        ("/docs", False),
        ("/", False),
    ],
)
def test_should_authenticate(path, expected):
    assert should_authenticate(path) is expected


class TestApiKeyStrength:
    """Tests for API key minimum length validation."""

    def test_short_api_key_rejected_at_startup(self, monkeypatch):
        """Keys shorter than 32 characters raise ValueError."""
        monkeypatch.setenv("FLEETWIRE_API_KEY", "too-short")
        with pytest.raises(ValueError, match="too short"):
            validate_api_key_strength()

    def test_valid_length_api_key_accepted(self, monkeypatch):
        monkeypatch.setenv("FLEETWIRE_API_KEY", "a" * 32)
        validate_api_key_strength()

    def test_empty_api_key_skips_validation(self, monkeypatch):
        monkeypatch.delenv("FLEETWIRE_API_KEY", raising=False)
        validate_api_key_strength()


class TestAuthRateLimit:
    """Tests for auth failure rate limiting."""

    def test_auth_rate_limit_blocks_after_max_attempts(self, client: TestClient, monkeypatch):
        """After _AUTH_FAIL_MAX bad attempts, returns 429."""
        monkeypatch.setenv("FLEETWIRE_API_KEY", API_KEY)

        for _ in range(_AUTH_FAIL_MAX):
            resp = client.get(STATUS_URL, headers={"X-API-Key": "wrong-key"})
            assert resp.status_code == 401

        resp = client.get(STATUS_URL, headers={"X-API-Key": "wrong-key"})
        assert resp.status_code == 429
        assert "too many" in resp.json()["detail"].lower()

        # A correct key is blocked too until the window passes
        resp = client.get(STATUS_URL, headers={"X-API-Key": API_KEY})
        assert resp.status_code == 429

    def test_auth_rate_limit_resets_after_window(self, client: TestClient, monkeypatch):
        monkeypatch.setenv("FLEETWIRE_API_KEY", API_KEY)

        for _ in range(_AUTH_FAIL_MAX):
            client.get(STATUS_URL, headers={"X-API-Key": "wrong-key"})
        assert client.get(STATUS_URL, headers={"X-API-Key": "wrong-key"}).status_code == 429

        # Simulates window expiry
        reset_rate_limiter()

        resp = client.get(STATUS_URL, headers={"X-API-Key": "wrong-key"})
        assert resp.status_code == 401


class TestTrustedProxyConfig:
    """X-Forwarded-For is only honored behind a trusted proxy."""

    def test_get_client_ip_ignores_xff_by_default(self, monkeypatch):
        monkeypatch.setattr(auth_mod, "_TRUST_PROXY", False)
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "1.2.3.4"}
        request.client.host = "127.0.0.1"
        assert _get_client_ip(request) == "127.0.0.1"

    def test_get_client_ip_uses_xff_when_trusted(self, monkeypatch):
        monkeypatch.setattr(auth_mod, "_TRUST_PROXY", True)
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "1.2.3.4, 5.6.7.8"}
        request.client.host = "127.0.0.1"
        assert _get_client_ip(request) == "1.2.3.4"
