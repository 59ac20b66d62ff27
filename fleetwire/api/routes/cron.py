"""Cron endpoints for the notification sweeps.

Meant for an external scheduler (Vercel cron, systemd timer, k8s
CronJob). When ``CRON_SECRET`` is set, callers must present
``Authorization: Bearer <secret>`` or the dashboard API key. Both GET and
POST are accepted because hosted cron services differ in the verb they use.
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from fleetwire.api.middleware.auth import get_cron_secret, get_expected_api_key, has_valid_cron_bearer
from fleetwire.api.routes.deps import get_policy, get_registry
from fleetwire.api.schemas import SweepResponse
from fleetwire.db.connection import get_db
from fleetwire.errors import FleetwireError
from fleetwire.services.notification_workflows import NotificationPolicy, NotificationWorkflows
from fleetwire.whatsapp.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def require_cron_auth(request: Request) -> None:
    """Reject the call unless it carries the cron secret or the API key.

    Raises:
        FleetwireError: E-5002 with HTTP 401.
    """
    if not get_cron_secret():
        return
    if has_valid_cron_bearer(request):
        return
    api_key = get_expected_api_key()
    provided = request.headers.get("X-API-Key", "")
    if api_key and provided and hmac.compare_digest(provided, api_key):
        return
    logger.warning("Rejected unauthenticated cron call to %s", request.url.path)
    raise FleetwireError.from_code("E-5002", status_code=401, resource="cron endpoint")


async def _run(
    sweep: str,
    organization_id: str | None,
    db: Session,
    registry: ConnectionRegistry,
    policy: NotificationPolicy,
) -> dict:
    workflows = NotificationWorkflows(db, registry, policy)
    summaries = await workflows.run_sweep(sweep, organization_id)
    errors = [error for s in summaries for error in s.errors]
    return SweepResponse(
        sweep=sweep,
        processed=sum(s.processed for s in summaries),
        sent=sum(s.sent for s in summaries),
        failed=sum(s.failed for s in summaries),
        errors=errors,
        organizations=[s.to_dict() for s in summaries],
    ).model_dump()


@router.api_route("/invoice-reminders", methods=["GET", "POST"], dependencies=[Depends(require_cron_auth)])
async def invoice_reminders(
    organization_id: str | None = Query(None, alias="organizationId"),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    policy: NotificationPolicy = Depends(get_policy),
):
    """Send due payment reminders for one organization, or all when omitted."""
    return await _run("invoice_reminders", organization_id, db, registry, policy)


@router.api_route("/trip-notifications", methods=["GET", "POST"], dependencies=[Depends(require_cron_auth)])
async def trip_notifications(
    organization_id: str | None = Query(None, alias="organizationId"),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    policy: NotificationPolicy = Depends(get_policy),
):
    """Notify drivers about upcoming trips for one organization, or all when omitted."""
    return await _run("trip_notifications", organization_id, db, registry, policy)
