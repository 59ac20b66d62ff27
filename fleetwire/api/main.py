"""FastAPI application for the Fleetwire API.

Provides the main application instance with routers, middleware, and
exception handlers configured. The lifespan owns the process-wide
WhatsApp connection registry and the optional in-process scheduler.
"""

import logging
import os
import sys
import time as _time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("fleetwire").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fleetwire import __version__
from fleetwire.api.middleware.auth import maybe_require_api_key, validate_api_key_strength
from fleetwire.api.routes import cron, webhooks, whatsapp
from fleetwire.cli.config import load_effective_config
from fleetwire.db.connection import get_db_context, init_db
from fleetwire.errors import FleetwireError
from fleetwire.services.inbound_handler import handle_inbound
from fleetwire.services.notification_workflows import NotificationPolicy, make_ready_listener
from fleetwire.utils.paths import ensure_dirs_exist
from fleetwire.whatsapp.registry import ConnectionRegistry
from fleetwire.whatsapp.session_store import SessionStore, session_id_for

logger = logging.getLogger(__name__)

# Module-level state for the health endpoint
_startup_time: float = 0.0


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


async def _auto_initialize(registry: ConnectionRegistry, default_organization: str | None) -> None:
    """Reconnect every organization with stored credentials, plus the default one."""
    store = registry.session_store
    organizations = list(store.list_organizations())
    if default_organization and default_organization not in organizations:
        organizations.append(default_organization)
    for organization_id in organizations:
        if not store.has_credentials(session_id_for(organization_id)):
            logger.info(
                "No stored WhatsApp session for %s; scan the QR code from the status endpoint to pair",
                organization_id,
            )
        try:
            await registry.get_or_create(organization_id).initialize()
        except Exception as e:
            logger.error("Auto-initialize of WhatsApp for %s failed (non-blocking): %s", organization_id, e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: database, connection registry, scheduler."""
    global _startup_time

    # --- Startup ---
    _startup_time = _time.time()
    validate_api_key_strength()
    ensure_dirs_exist()
    init_db()

    config = load_effective_config()
    policy = NotificationPolicy.from_config(config)
    session_store = SessionStore(db_context=get_db_context)
    registry = ConnectionRegistry(session_store, on_message=handle_inbound)
    registry.subscribe(make_ready_listener(registry, policy))

    app.state.config = config
    app.state.policy = policy
    app.state.registry = registry

    logger.warning(
        "Fleetwire runtime policy: single-worker mode only. WhatsApp connection "
        "state is held in process memory."
    )

    if config.server.auto_initialize:
        await _auto_initialize(registry, config.server.default_organization)

    scheduler = None
    if config.scheduler.enabled:
        from fleetwire.services.scheduler import NotificationScheduler

        scheduler = NotificationScheduler(registry, config.scheduler, policy)
        scheduler.start()

    yield

    # --- Shutdown ---
    if scheduler is not None:
        scheduler.stop()
    await registry.shutdown()


app = FastAPI(
    title="Fleetwire API",
    description="WhatsApp connection and notification bridge for the logistics back-office",
    version=__version__,
    lifespan=lifespan,
)

# Optional API auth for /api/* when FLEETWIRE_API_KEY is configured.
app.middleware("http")(maybe_require_api_key)

# CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
allowed_origins = _parse_allowed_origins()
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )


@app.exception_handler(FleetwireError)
async def fleetwire_error_handler(request: Request, exc: FleetwireError) -> JSONResponse:
    """Handle FleetwireError exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.code,
            "message": exc.message,
            "remediation": exc.remediation,
            "details": exc.details if exc.details else None,
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400 VALIDATION_ERROR without echoing input."""
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {"code": "VALIDATION_ERROR", "message": "; ".join(problems) or "Invalid request"},
        },
    )


# Include routers
app.include_router(whatsapp.router, prefix="/api/v1")
app.include_router(cron.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Liveness with uptime and the number of tracked WhatsApp clients."""
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    registry = getattr(app.state, "registry", None)
    return {
        "status": "healthy",
        "version": __version__,
        "uptime_seconds": uptime,
        "whatsapp_clients": len(registry.organizations()) if registry else 0,
    }


@app.get("/readyz")
def readiness_check():
    """Dependency-aware readiness check for local/container deployments."""
    from sqlalchemy import text

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    checks: dict[str, dict[str, Any]] = {}

    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "uptime_seconds": uptime,
                "checks": {
                    "database": {"status": "error", "message": str(exc)},
                },
            },
        )

    status = "ready"
    registry = getattr(app.state, "registry", None)
    if registry is None:
        checks["whatsapp"] = {"status": "not_started"}
        status = "degraded"
    else:
        states = {org: registry.get_state(org).status.value for org in registry.organizations()}
        checks["whatsapp"] = {"status": "ok", "organizations": states}

    if not os.environ.get("CRON_SECRET", "").strip():
        checks["cron_secret"] = {"status": "degraded", "message": "CRON_SECRET not set"}
    else:
        checks["cron_secret"] = {"status": "configured"}

    return {
        "status": status,
        "uptime_seconds": uptime,
        "checks": checks,
    }
