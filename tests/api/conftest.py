"""Pytest fixtures for API tests.

Provides a test client whose database, connection registry, config and
policy dependencies point at in-memory fixtures. WhatsApp clients are
fake transports driven by the test.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from fleetwire.api.main import app
from fleetwire.api.middleware.auth import reset_rate_limiter
from fleetwire.api.routes.deps import get_config, get_policy, get_registry
from fleetwire.cli.config import FleetwireConfig, ServerConfig
from fleetwire.db.connection import get_db
from fleetwire.services.notification_workflows import NotificationPolicy
from fleetwire.whatsapp.registry import ConnectionRegistry


@pytest.fixture
def api_config() -> FleetwireConfig:
    return FleetwireConfig(server=ServerConfig(default_organization="acme"))


@pytest.fixture
def client(
    db_session: Session, registry: ConnectionRegistry, api_config: FleetwireConfig
) -> Generator[TestClient, None, None]:
    """Create a TestClient with overridden dependencies.

    Args:
        db_session: Test database session fixture.
        registry: Registry backed by the fake transport factory.
        api_config: Config served to the routes.

    Yields:
        TestClient configured for testing.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_config] = lambda: api_config
    app.dependency_overrides[get_policy] = lambda: NotificationPolicy(send_timeout_seconds=5.0)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter state between tests."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def ready_client(client: TestClient, transport_factory):
    """Client whose default organization has a ready WhatsApp connection."""
    response = client.post("/api/v1/whatsapp/initialize", json={})
    assert response.status_code == 200
    transport_factory.last.emit_ready()
    return client
