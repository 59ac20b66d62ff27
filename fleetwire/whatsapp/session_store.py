"""Durable storage for WhatsApp device-pairing credentials.

The client library writes its credentials into a per-session working
directory. That directory alone does not survive a redeploy onto a fresh
filesystem, so after every successful authentication the store packs the
directory into an in-memory zip, seals it with AES-256-GCM (bound to the
session id) and upserts it into ``whatsapp_sessions``. Before a client
starts, an empty working directory is re-populated from that row.

Logout is the only path that deletes credentials; a dropped connection
keeps them so the next initialize reconnects silently.
"""

import base64
import io
import logging
import re
import shutil
import zipfile
from collections.abc import Callable
from contextlib import AbstractContextManager
from pathlib import Path

from sqlalchemy.orm import Session

from fleetwire.db.models import WhatsAppSession, utc_now_iso
from fleetwire.services.credential_encryption import (
    CredentialDecryptionError,
    decrypt_credentials,
    encrypt_credentials,
    get_or_create_key,
)
from fleetwire.utils.paths import get_session_dir

logger = logging.getLogger(__name__)

DbContextFactory = Callable[[], AbstractContextManager[Session]]

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]+")


def session_id_for(organization_id: str) -> str:
    """Derive the stable session id for an organization.

    The id names a directory on disk, so anything outside ``[A-Za-z0-9_-]``
    is collapsed to a dash.
    """
    slug = _UNSAFE_CHARS.sub("-", organization_id.strip()).strip("-")
    if not slug:
        raise ValueError(f"Cannot derive a session id from organization id {organization_id!r}")
    return f"org-{slug}"


class SessionStore:
    """Per-session working directories with an encrypted database mirror.

    Args:
        root: Parent directory for session working directories.
        db_context: Factory for a committing session context manager.
            None disables the database mirror (working directory only).
        key: 32-byte AES key. Resolved lazily via get_or_create_key() when
            omitted.
    """

    def __init__(
        self,
        root: Path | None = None,
        db_context: DbContextFactory | None = None,
        key: bytes | None = None,
    ) -> None:
        self._root = root or get_session_dir()
        self._db_context = db_context
        self._key = key

    def _get_key(self) -> bytes:
        if self._key is None:
            self._key = get_or_create_key()
        return self._key

    def session_path(self, session_id: str) -> Path:
        """Return (and create) the working directory for ``session_id``."""
        path = self._root / session_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _has_local_files(self, session_id: str) -> bool:
        path = self._root / session_id
        return path.is_dir() and any(path.iterdir())

    def _get_row(self, db: Session, session_id: str) -> WhatsAppSession | None:
        return db.query(WhatsAppSession).filter(WhatsAppSession.session_id == session_id).first()

    def has_credentials(self, session_id: str) -> bool:
        """Return True if a paired session can be resumed without a QR scan."""
        if self._has_local_files(session_id):
            return True
        if self._db_context is None:
            return False
        with self._db_context() as db:
            return self._get_row(db, session_id) is not None

    def restore(self, session_id: str) -> bool:
        """Populate an empty working directory from the database mirror.

        Returns:
            True if files were restored. False if the directory already had
            files, there is no stored blob, or the blob could not be opened
            (the client then falls back to QR pairing).
        """
        if self._db_context is None or self._has_local_files(session_id):
            return False

        with self._db_context() as db:
            row = self._get_row(db, session_id)
            encrypted = row.encrypted_blob if row else None
        if encrypted is None:
            return False

        try:
            payload = decrypt_credentials(encrypted, self._get_key(), aad=session_id)
            archive = base64.b64decode(payload["archive"])
        except (CredentialDecryptionError, KeyError, ValueError) as e:
            logger.error("Stored credentials for %s could not be opened: %s", session_id, e)
            return False

        target = self.session_path(session_id)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for member in zf.namelist():
                # Reject absolute paths and traversal out of the working dir
                resolved = (target / member).resolve()
                if not resolved.is_relative_to(target.resolve()):
                    logger.error("Refusing to restore %s: unsafe member %r", session_id, member)
                    return False
            zf.extractall(target)
        logger.info("Restored WhatsApp credentials for %s", session_id)
        return True

    def _pack(self, session_id: str) -> bytes:
        source = self._root / session_id
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for path in sorted(source.rglob("*")):
                if path.is_file():
                    zf.write(path, path.relative_to(source).as_posix())
        return buffer.getvalue()

    def persist(
        self,
        session_id: str,
        organization_id: str,
        phone_number: str | None = None,
    ) -> bool:
        """Seal the working directory into the database mirror.

        Returns:
            True if a blob was written, False if there is nothing to store
            or the mirror is disabled.
        """
        if self._db_context is None or not self._has_local_files(session_id):
            return False

        envelope = encrypt_credentials(
            {"archive": base64.b64encode(self._pack(session_id)).decode("ascii")},
            self._get_key(),
            aad=session_id,
        )
        with self._db_context() as db:
            row = self._get_row(db, session_id)
            if row is None:
                db.add(WhatsAppSession(
                    session_id=session_id,
                    organization_id=organization_id,
                    encrypted_blob=envelope,
                    phone_number=phone_number,
                ))
            else:
                row.encrypted_blob = envelope
                row.updated_at = utc_now_iso()
                if phone_number:
                    row.phone_number = phone_number
        logger.info("Persisted WhatsApp credentials for %s", session_id)
        return True

    def delete(self, session_id: str) -> None:
        """Remove the working directory and the database mirror."""
        path = self._root / session_id
        if path.exists():
            shutil.rmtree(path)
        if self._db_context is not None:
            with self._db_context() as db:
                row = self._get_row(db, session_id)
                if row is not None:
                    db.delete(row)
        logger.info("Deleted WhatsApp credentials for %s", session_id)

    def list_organizations(self) -> list[str]:
        """Return organization ids that have a stored session blob."""
        if self._db_context is None:
            return []
        with self._db_context() as db:
            rows = db.query(WhatsAppSession.organization_id).order_by(WhatsAppSession.created_at).all()
            return [org_id for (org_id,) in rows]
