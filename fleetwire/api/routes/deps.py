"""Shared dependencies and response helpers for route modules.

The connection registry, configuration and workflow policy live on
``app.state`` and are set up by the application lifespan. Tests override
these dependencies through ``app.dependency_overrides``.
"""

import logging

from fastapi import Request
from starlette.responses import JSONResponse

from fleetwire.cli.config import FleetwireConfig
from fleetwire.errors import DomainError, NotFoundError, ValidationError
from fleetwire.services.notification_workflows import NotificationPolicy
from fleetwire.utils.redaction import sanitize_error_message
from fleetwire.whatsapp.dispatcher import DispatchResult
from fleetwire.whatsapp.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_config(request: Request) -> FleetwireConfig:
    return getattr(request.app.state, "config", None) or FleetwireConfig()


def get_policy(request: Request) -> NotificationPolicy:
    policy = getattr(request.app.state, "policy", None)
    return policy or NotificationPolicy.from_config(get_config(request))


def resolve_organization(organization_id: str | None, config: FleetwireConfig) -> str:
    """Use the explicit organization id, else the configured default.

    Raises:
        ValidationError: If neither is set.
    """
    org = (organization_id or "").strip() or (config.server.default_organization or "")
    if not org:
        raise ValidationError("organizationId is required (no default organization configured)")
    return org


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


def domain_error_response(e: DomainError) -> JSONResponse:
    """Map a domain exception to its HTTP status."""
    if isinstance(e, NotFoundError):
        status_code = 404
    elif isinstance(e, ValidationError):
        status_code = 400
    else:
        status_code = 409
    return error_response(status_code, e.code, e.message)


def dispatch_response(result: DispatchResult) -> JSONResponse:
    """Render a send result, mapping failures to their HTTP status."""
    status_code = 200 if result.success else result.error_code.http_status
    return JSONResponse(status_code=status_code, content=result.to_dict())


def internal_error(e: Exception, operation: str) -> JSONResponse:
    """Build a structured 500 response and log the full traceback.

    Args:
        e: The exception that was raised.
        operation: Human-readable operation name for the log message.
    """
    logger.error(
        "Unexpected error during %s: %s: %s",
        operation, type(e).__name__, e,
        exc_info=True,
    )
    return error_response(500, "INTERNAL_ERROR", sanitize_error_message(str(e)))
