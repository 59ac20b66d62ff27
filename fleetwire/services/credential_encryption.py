"""AES-256-GCM encryption for WhatsApp session credentials at rest.

The pairing library writes its device credentials to a local file. The
session store mirrors that file into the database so a paired device
survives a redeploy onto a fresh filesystem; this module seals it.

Key source precedence:
    1. FLEETWIRE_CREDENTIAL_KEY env var (base64-encoded 32-byte key)
    2. FLEETWIRE_CREDENTIAL_KEY_FILE env var (path to raw key file)
    3. Key file in the platformdirs data dir (auto-generated on first use)

Ciphertext format: versioned JSON envelope
``{"v": 1, "alg": "AES-256-GCM", "nonce": <b64>, "ct": <b64>}`` with the
session id bound in as additional authenticated data.
"""

import base64
import binascii
import json
import logging
import os
import platform
import stat

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_FILENAME = ".fleetwire_key"
_CURRENT_VERSION = 1
_ALGORITHM = "AES-256-GCM"
_REQUIRED_KEY_LENGTH = 32
_NONCE_LENGTH = 12


class CredentialDecryptionError(Exception):
    """Raised when a sealed session blob cannot be opened for any reason."""


def get_default_key_dir() -> str:
    """Return the platform-appropriate app-data directory for key storage."""
    from fleetwire.utils.paths import get_data_dir

    directory = get_data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return str(directory)


def _read_key_file(path: str, hint: str = "") -> bytes:
    with open(path, "rb") as f:
        key = f.read()
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Key file {path} has invalid length {len(key)} "
            f"(expected {_REQUIRED_KEY_LENGTH}).{hint}"
        )
    return key


def get_or_create_key(key_dir: str | None = None) -> bytes:
    """Load or generate the 32-byte AES-256 encryption key.

    Args:
        key_dir: Directory for the generated key file (source 3 only).
            Defaults to the platformdirs data dir.

    Returns:
        32-byte encryption key.

    Raises:
        ValueError: If the key has an invalid length or encoding, or the
            configured key file is missing, not a regular file, or a symlink.
    """
    env_key = os.environ.get("FLEETWIRE_CREDENTIAL_KEY", "").strip()
    if env_key:
        try:
            key = base64.b64decode(env_key, validate=True)
        except binascii.Error as e:
            raise ValueError(
                f"FLEETWIRE_CREDENTIAL_KEY contains invalid base64: {e}"
            ) from e
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"FLEETWIRE_CREDENTIAL_KEY has invalid length {len(key)} "
                f"(expected {_REQUIRED_KEY_LENGTH})"
            )
        return key

    env_key_file = os.environ.get("FLEETWIRE_CREDENTIAL_KEY_FILE", "").strip()
    if env_key_file:
        if os.path.islink(env_key_file):
            raise ValueError(
                f"FLEETWIRE_CREDENTIAL_KEY_FILE is a symlink: {env_key_file}"
            )
        if not os.path.isfile(env_key_file):
            raise ValueError(
                f"FLEETWIRE_CREDENTIAL_KEY_FILE is not a regular file: {env_key_file}"
            )
        return _read_key_file(env_key_file)

    directory = key_dir or get_default_key_dir()
    os.makedirs(directory, exist_ok=True)
    key_path = os.path.join(directory, KEY_FILENAME)
    regenerate_hint = " Delete the file to regenerate."

    if os.path.exists(key_path):
        key = _read_key_file(key_path, regenerate_hint)
        if platform.system() != "Windows":
            mode = stat.S_IMODE(os.stat(key_path).st_mode)
            if mode & (stat.S_IRGRP | stat.S_IWGRP | stat.S_IROTH | stat.S_IWOTH):
                logger.warning(
                    "Key file %s has permissions %o, recommend chmod 600",
                    key_path, mode,
                )
        return key

    key = os.urandom(_REQUIRED_KEY_LENGTH)
    try:
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            os.write(fd, key)
        finally:
            os.close(fd)
    except FileExistsError:
        # Another worker created the key between the exists() check and open()
        return _read_key_file(key_path, regenerate_hint)

    logger.info("Generated new session encryption key at %s", key_path)
    return key


def encrypt_credentials(credentials: dict, key: bytes, aad: str = "") -> str:
    """Seal a JSON-serializable credentials dict into a versioned envelope.

    Args:
        credentials: Dict to encrypt (session blobs are passed base64-encoded).
        key: 32-byte AES-256 key.
        aad: Additional authenticated data, the session id for session blobs.

    Returns:
        JSON envelope string.

    Raises:
        ValueError: If key is not exactly 32 bytes.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Encryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )
    nonce = os.urandom(_NONCE_LENGTH)
    plaintext = json.dumps(credentials, sort_keys=True).encode("utf-8")
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, aad.encode("utf-8") if aad else None)
    return json.dumps({
        "v": _CURRENT_VERSION,
        "alg": _ALGORITHM,
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(ciphertext).decode("ascii"),
    })


def decrypt_credentials(encrypted: str, key: bytes, aad: str = "") -> dict:
    """Open an envelope produced by encrypt_credentials.

    Args:
        encrypted: JSON envelope string.
        key: 32-byte AES-256 key.
        aad: Additional authenticated data used at encryption time.

    Returns:
        Decrypted dict.

    Raises:
        CredentialDecryptionError: On wrong key, tampered ciphertext,
            mismatched AAD, or malformed envelope.
    """
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise CredentialDecryptionError(
            f"Decryption key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
        )

    try:
        envelope = json.loads(encrypted)
    except (json.JSONDecodeError, TypeError) as e:
        raise CredentialDecryptionError(f"Invalid envelope format: {e}") from e
    if not isinstance(envelope, dict):
        raise CredentialDecryptionError("Envelope is not a JSON object")

    if envelope.get("v") != _CURRENT_VERSION:
        raise CredentialDecryptionError(
            f"Unsupported envelope version {envelope.get('v')} (expected {_CURRENT_VERSION})"
        )
    if envelope.get("alg") != _ALGORITHM:
        raise CredentialDecryptionError(
            f"Unsupported algorithm '{envelope.get('alg')}' (expected '{_ALGORITHM}')"
        )

    try:
        nonce = base64.b64decode(envelope["nonce"], validate=True)
        ciphertext = base64.b64decode(envelope["ct"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise CredentialDecryptionError(f"Malformed envelope fields: {e}") from e
    if len(nonce) != _NONCE_LENGTH:
        raise CredentialDecryptionError(
            f"Invalid nonce length {len(nonce)} (expected {_NONCE_LENGTH})"
        )

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, aad.encode("utf-8") if aad else None)
        result = json.loads(plaintext.decode("utf-8"))
    except Exception as e:
        raise CredentialDecryptionError(f"Decryption failed: {e}") from e
    if not isinstance(result, dict):
        raise CredentialDecryptionError(
            f"Decrypted payload is not a dict (got {type(result).__name__})"
        )
    return result
