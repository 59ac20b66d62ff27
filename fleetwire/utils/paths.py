"""File path resolution using platformdirs.

Fleetwire keeps two kinds of local state: the SQLite database (when no
DATABASE_URL is configured) and per-organization WhatsApp session working
directories. Both default to the platform user data dir:
  macOS: ~/Library/Application Support/fleetwire/
  Linux: ~/.local/share/fleetwire/
  Windows: %LOCALAPPDATA%/fleetwire/
"""

import os
from pathlib import Path

import platformdirs

APP_NAME = "fleetwire"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, session working dirs).

    FLEETWIRE_DATA_DIR overrides the platform default, which is useful for
    container deployments that mount a volume.
    """
    override = os.environ.get("FLEETWIRE_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_session_dir() -> Path:
    """Return the root directory for WhatsApp session working directories."""
    override = os.environ.get("FLEETWIRE_SESSION_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return get_data_dir() / "whatsapp-sessions"


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "fleetwire.db"


def ensure_dirs_exist() -> None:
    """Create all required directories if they don't exist."""
    for d in [get_data_dir(), get_session_dir()]:
        d.mkdir(parents=True, exist_ok=True)
