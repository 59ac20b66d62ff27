"""Tests for local file path resolution."""

import os
from pathlib import Path
from unittest.mock import patch

from fleetwire.utils.paths import ensure_dirs_exist, get_data_dir, get_default_db_path, get_session_dir


def test_data_dir_override(monkeypatch, tmp_path):
    monkeypatch.setenv("FLEETWIRE_DATA_DIR", str(tmp_path / "data"))
    assert get_data_dir() == tmp_path / "data"


def test_data_dir_platform_default(monkeypatch):
    """Without an override the platform user data dir is used."""
    monkeypatch.delenv("FLEETWIRE_DATA_DIR", raising=False)
    result = get_data_dir()
    assert isinstance(result, Path)
    assert "fleetwire" in str(result).lower()


def test_session_dir_under_data_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("FLEETWIRE_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("FLEETWIRE_SESSION_DIR", raising=False)
    assert get_session_dir() == tmp_path / "whatsapp-sessions"


def test_session_dir_override(monkeypatch, tmp_path):
    monkeypatch.setenv("FLEETWIRE_SESSION_DIR", str(tmp_path / "sessions"))
    assert get_session_dir() == tmp_path / "sessions"


def test_get_default_db_path(monkeypatch, tmp_path):
    monkeypatch.setenv("FLEETWIRE_DATA_DIR", str(tmp_path))
    assert get_default_db_path() == tmp_path / "fleetwire.db"


def test_ensure_dirs_exist(monkeypatch, tmp_path):
    monkeypatch.setenv("FLEETWIRE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("FLEETWIRE_SESSION_DIR", raising=False)
    ensure_dirs_exist()
    assert (tmp_path / "data" / "whatsapp-sessions").is_dir()


def test_database_url_precedence():
    """DATABASE_URL wins over FLEETWIRE_DB_PATH."""
    from fleetwire.db.connection import get_database_url

    with patch.dict(os.environ, {"DATABASE_URL": "sqlite:///custom/path.db", "FLEETWIRE_DB_PATH": "/tmp/x.db"}):
        assert get_database_url() == "sqlite:///custom/path.db"
    with patch.dict(os.environ, {"FLEETWIRE_DB_PATH": "/tmp/x.db"}):
        os.environ.pop("DATABASE_URL", None)
        assert get_database_url() == "sqlite:////tmp/x.db"
