"""Webhook endpoints called by the back-office dashboard on business events."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from fleetwire.api.routes.deps import domain_error_response, get_policy, get_registry, internal_error
from fleetwire.api.schemas import InvoiceReminderWebhook, TripAssignedWebhook
from fleetwire.db.connection import get_db
from fleetwire.errors import DomainError
from fleetwire.services.notification_workflows import (
    NotificationOutcome,
    NotificationPolicy,
    NotificationWorkflows,
)
from fleetwire.utils.redaction import redact_for_logging
from fleetwire.whatsapp.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _outcome_response(outcome: NotificationOutcome) -> JSONResponse:
    status_code = 200
    if outcome.status == "queued":
        status_code = 202
    elif outcome.status == "superseded":
        status_code = 409
    elif outcome.status == "failed" and outcome.result is not None:
        status_code = outcome.result.error_code.http_status
    return JSONResponse(status_code=status_code, content=outcome.to_dict())


@router.post("/trip-assigned")
async def trip_assigned(
    body: TripAssignedWebhook,
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    policy: NotificationPolicy = Depends(get_policy),
):
    """Notify the driver of a newly assigned trip, or queue the notification."""
    logger.debug("trip-assigned webhook: %s", redact_for_logging(body.model_dump(by_alias=True)))
    try:
        workflows = NotificationWorkflows(db, registry, policy)
        outcome = await workflows.notify_trip_assignment(
            body.trip_id,
            body.organization_id,
            send_immediately=body.send_immediately,
            force=body.force,
        )
        return _outcome_response(outcome)
    except DomainError as e:
        return domain_error_response(e)
    except Exception as e:
        return internal_error(e, "trip-assigned webhook")


@router.post("/invoice-reminder")
async def invoice_reminder(
    body: InvoiceReminderWebhook,
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
    policy: NotificationPolicy = Depends(get_policy),
):
    """Send a payment reminder for one invoice, or queue it."""
    logger.debug("invoice-reminder webhook: %s", redact_for_logging(body.model_dump(by_alias=True)))
    try:
        workflows = NotificationWorkflows(db, registry, policy)
        outcome = await workflows.send_invoice_reminder(
            body.invoice_id,
            body.organization_id,
            send_immediately=body.send_immediately,
        )
        return _outcome_response(outcome)
    except DomainError as e:
        return domain_error_response(e)
    except Exception as e:
        return internal_error(e, "invoice-reminder webhook")
