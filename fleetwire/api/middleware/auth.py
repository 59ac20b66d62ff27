"""Optional API-key auth middleware for the dashboard-facing API.

The key is a shared secret between the back-office dashboard and
Fleetwire; every authenticated caller has the same privileges. Cron
routes additionally accept ``Authorization: Bearer $CRON_SECRET`` so a
scheduler does not need the dashboard key.
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
import time

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

_PUBLIC_PATH_PREFIXES = (
    "/health",
    "/readyz",
    "/docs",
    "/redoc",
    "/openapi.json",
)

_CRON_PATH_PREFIX = "/api/v1/cron/"

# --- Rate limiting for auth failures ---
_AUTH_FAIL_MAX = 10  # Max failures per IP in the time window
_AUTH_FAIL_WINDOW_SECONDS = 300
_auth_failures: dict[str, list[float]] = {}
_auth_lock = threading.Lock()

# X-Forwarded-For is only honored behind a trusted reverse proxy
_TRUST_PROXY = os.environ.get("FLEETWIRE_TRUST_PROXY", "").strip().lower() in ("1", "true")


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request.

    Only uses X-Forwarded-For when FLEETWIRE_TRUST_PROXY is enabled, so a
    client cannot spoof its address to dodge the rate limiter.
    """
    if _TRUST_PROXY:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _is_rate_limited(client_ip: str) -> bool:
    """Check if the client IP has exceeded the auth failure rate limit."""
    with _auth_lock:
        now = time.monotonic()
        timestamps = _auth_failures.get(client_ip, [])
        timestamps = [t for t in timestamps if now - t < _AUTH_FAIL_WINDOW_SECONDS]
        _auth_failures[client_ip] = timestamps
        return len(timestamps) >= _AUTH_FAIL_MAX


def _record_auth_failure(client_ip: str) -> None:
    with _auth_lock:
        _auth_failures.setdefault(client_ip, []).append(time.monotonic())


def reset_rate_limiter() -> None:
    """Reset the rate limiter state. Used by tests."""
    with _auth_lock:
        _auth_failures.clear()


# --- Key strength validation ---
_MIN_API_KEY_LENGTH = 32


def validate_api_key_strength() -> None:
    """Validate that the configured API key meets minimum strength requirements.

    Called at startup.

    Raises:
        ValueError: If FLEETWIRE_API_KEY is set but shorter than 32 characters.
    """
    key = get_expected_api_key()
    if key and len(key) < _MIN_API_KEY_LENGTH:
        raise ValueError(
            f"FLEETWIRE_API_KEY is too short ({len(key)} chars). "
            f"Minimum length is {_MIN_API_KEY_LENGTH} characters for security."
        )


def get_expected_api_key() -> str:
    """Return configured API key; empty string means auth disabled."""
    return os.environ.get("FLEETWIRE_API_KEY", "").strip()


def get_cron_secret() -> str:
    """Return configured cron secret; empty string means cron bearer auth disabled."""
    return os.environ.get("CRON_SECRET", "").strip()


def has_valid_cron_bearer(request: Request) -> bool:
    """True if the request carries ``Authorization: Bearer <CRON_SECRET>``."""
    secret = get_cron_secret()
    if not secret:
        return False
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip(), secret)


def _is_public_path(path: str) -> bool:
    return path.startswith(_PUBLIC_PATH_PREFIXES)


def should_authenticate(path: str) -> bool:
    """Return True when this path should be protected by API-key auth."""
    if _is_public_path(path):
        return False
    return path.startswith("/api/")


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """FastAPI middleware entrypoint for optional API-key auth.

    Blocks client IPs that exceed _AUTH_FAIL_MAX failures within
    _AUTH_FAIL_WINDOW_SECONDS. CORS preflight requests always pass.
    """
    if request.method.upper() == "OPTIONS":
        return await call_next(request)

    expected_key = get_expected_api_key()
    path = request.url.path
    if not expected_key or not should_authenticate(path):
        return await call_next(request)

    # Cron routes check their own bearer secret
    if path.startswith(_CRON_PATH_PREFIX) and has_valid_cron_bearer(request):
        return await call_next(request)

    client_ip = _get_client_ip(request)
    if _is_rate_limited(client_ip):
        logger.warning("Auth rate limit exceeded for IP %s", client_ip)
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many authentication failures. Try again later."},
        )

    provided_key = request.headers.get("X-API-Key", "")
    if not provided_key or not hmac.compare_digest(provided_key, expected_key):
        _record_auth_failure(client_ip)
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid or missing API key"},
        )
    return await call_next(request)
