"""Root-level pytest fixtures for all tests.

Provides shared fixtures including:
- An isolated data directory, set before fleetwire.db.connection builds
  its engine at import time
- In-memory database sessions and a committing context factory
- Sample organization, customer and driver rows
- A connection registry backed by the fake WhatsApp transport
"""

import os
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="fleetwire-tests-")
os.environ["FLEETWIRE_DATA_DIR"] = _TEST_DATA_DIR
os.environ["FLEETWIRE_DB_PATH"] = os.path.join(_TEST_DATA_DIR, "fleetwire.db")
for _var in ("DATABASE_URL", "FLEETWIRE_API_KEY", "CRON_SECRET", "FLEETWIRE_CONFIG", "WHATSAPP_AUTO_INITIALIZE"):
    os.environ.pop(_var, None)

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from fleetwire.db.models import Base, Customer, Driver, Organization  # noqa: E402
from fleetwire.services import notification_workflows  # noqa: E402
from fleetwire.whatsapp.registry import ConnectionRegistry  # noqa: E402
from fleetwire.whatsapp.session_store import SessionStore  # noqa: E402
from tests.helpers import FakeTransportFactory, make_customer, make_driver, make_organization  # noqa: E402

# Tuesday morning; invoices due before 2026-10-20 are past due
NOW = datetime(2026, 10, 20, 9, 0, tzinfo=UTC)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database for testing.

    Creates all tables, yields a session, and cleans up after test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def db_context(db_session: Session):
    """Factory with the get_db_context contract, bound to the test session."""

    @contextmanager
    def _context():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    return _context


@pytest.fixture
def now() -> datetime:
    return NOW


# ============================================================================
# Sample Data
# ============================================================================


@pytest.fixture
def organization(db_session: Session) -> Organization:
    return make_organization(db_session)


@pytest.fixture
def customer(db_session: Session, organization: Organization) -> Customer:
    return make_customer(db_session, organization)


@pytest.fixture
def driver(db_session: Session, organization: Organization) -> Driver:
    return make_driver(db_session, organization)


# ============================================================================
# WhatsApp Fixtures
# ============================================================================


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def session_store(tmp_path) -> SessionStore:
    """Working-directory-only store with a fixed key."""
    return SessionStore(root=tmp_path / "sessions", key=os.urandom(32))


@pytest.fixture
def registry(session_store: SessionStore, transport_factory: FakeTransportFactory) -> ConnectionRegistry:
    return ConnectionRegistry(session_store, transport_factory=transport_factory)


@pytest.fixture(autouse=True)
def _reset_flush_locks():
    """Flush locks are per process; each test runs on a fresh event loop."""
    notification_workflows._flush_locks.clear()
    yield
    notification_workflows._flush_locks.clear()
