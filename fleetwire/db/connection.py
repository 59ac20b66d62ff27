"""Database connection management for Fleetwire.

Provides synchronous database access using SQLAlchemy. SQLite is the
default for single-host deployments; point DATABASE_URL at the
back-office database to share the invoice and trip tables with the
dashboard.

Usage:
    from fleetwire.db.connection import get_db, init_db

    init_db()  # Create tables
    db = next(get_db())
    # ... use db session
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker

from fleetwire.db.models import Base

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. FLEETWIRE_DB_PATH (converted to sqlite URL)
    3. sqlite:///<data dir>/fleetwire.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("FLEETWIRE_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    from fleetwire.utils.paths import get_default_db_path

    default_path = get_default_db_path()
    default_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{default_path}"


DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas for correctness and concurrency.

    Enables:
    - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
    - journal_mode=WAL: Concurrent readers while a sweep commits per entity.
    - synchronous=NORMAL: Durable after WAL fsync.
    """
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for request-scoped use with FastAPI Depends().

    Yields:
        Session: SQLAlchemy session that will be closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database sessions outside of FastAPI.

    Used by the scheduler, the pending-queue flush and inbound message
    handling, which all run outside a request.

    Usage:
        with get_db_context() as db:
            invoice = db.query(Invoice).first()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _ensure_columns_exist(conn: Any) -> None:
    """Add notification flag columns to pre-existing business tables (SQLite only).

    Older back-office databases predate the reminder cooldown and the
    per-invoice reminder cut-off. Idempotent, safe to call on every startup.

    Args:
        conn: SQLAlchemy Connection.

    Raises:
        OperationalError: For non-duplicate-column DDL failures.
    """
    from sqlalchemy.exc import OperationalError

    if conn.dialect.name != "sqlite":
        return

    migrations: dict[str, list[tuple[str, str]]] = {
        "invoices": [
            ("reminder_sent", "ALTER TABLE invoices ADD COLUMN reminder_sent BOOLEAN NOT NULL DEFAULT 0"),
            ("reminder_sent_at", "ALTER TABLE invoices ADD COLUMN reminder_sent_at VARCHAR(50)"),
            ("max_reminder_date", "ALTER TABLE invoices ADD COLUMN max_reminder_date VARCHAR(10)"),
        ],
        "trips": [
            ("driver_notified", "ALTER TABLE trips ADD COLUMN driver_notified BOOLEAN NOT NULL DEFAULT 0"),
            ("notified_at", "ALTER TABLE trips ADD COLUMN notified_at VARCHAR(50)"),
        ],
    }

    for table, columns in migrations.items():
        result = conn.execute(text(f"PRAGMA table_info({table})"))
        existing = {row[1] for row in result.fetchall()}
        for col_name, ddl in columns:
            if col_name in existing:
                continue
            try:
                conn.execute(text(ddl))
            except OperationalError as e:
                if "duplicate column" in str(e).lower():
                    logger.debug("Column %s.%s already exists (concurrent add).", table, col_name)
                else:
                    logger.error("Failed to add column %s.%s: %s", table, col_name, e)
                    raise


def init_db() -> None:
    """Create all database tables.

    Safe to call multiple times - will not recreate existing tables.
    Runs column migration for new columns on existing tables.
    """
    Base.metadata.create_all(bind=engine)
    with engine.begin() as conn:
        _ensure_columns_exist(conn)


def close_db() -> None:
    """Close the engine and dispose of the connection pool."""
    engine.dispose()
