"""API routes for the WhatsApp connection and operator sends.

Status reads never fail on a cold organization: an organization without a
client reports ``disconnected`` defaults. Sends return the dispatch
outcome with the HTTP status of its error code (NOT_READY 503,
RECIPIENT_UNAVAILABLE 422, TRANSPORT_ERROR 502, VALIDATION_ERROR 400).
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from fleetwire.api.routes.deps import (
    dispatch_response,
    domain_error_response,
    error_response,
    get_config,
    get_policy,
    get_registry,
    internal_error,
    resolve_organization,
)
from fleetwire.api.schemas import (
    DisconnectRequest,
    InitializeRequest,
    InvoiceReminderTemplateRequest,
    SendMessageRequest,
    StatusResponse,
    TripAssignmentTemplateRequest,
)
from fleetwire.cli.config import FleetwireConfig
from fleetwire.db.connection import get_db
from fleetwire.db.models import NotificationType
from fleetwire.errors import DomainError, get_error
from fleetwire.services.message_templates import invoice_reminder_message, trip_assignment_message
from fleetwire.services.notification_service import NotificationService
from fleetwire.services.notification_workflows import NotificationPolicy, NotificationWorkflows
from fleetwire.whatsapp.dispatcher import MAX_MESSAGE_LENGTH, is_valid_phone
from fleetwire.whatsapp.registry import ConnectionRegistry
from fleetwire.whatsapp.session_store import session_id_for
from fleetwire.whatsapp.state import RESTARTABLE_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


def _invalid_phone(phone_number: str) -> JSONResponse:
    message = get_error("E-2001").message_template.format(value=phone_number)
    return error_response(400, "VALIDATION_ERROR", message)


def _invalid_message() -> JSONResponse:
    message = get_error("E-2002").message_template.format(max_length=MAX_MESSAGE_LENGTH)
    return error_response(400, "VALIDATION_ERROR", message)


@router.get("/status")
def get_status(
    organization_id: str | None = Query(None, alias="organizationId"),
    registry: ConnectionRegistry = Depends(get_registry),
    config: FleetwireConfig = Depends(get_config),
    db: Session = Depends(get_db),
):
    """Connection snapshot and dispatch counters for one organization."""
    try:
        org = resolve_organization(organization_id, config)
    except DomainError as e:
        return domain_error_response(e)
    try:
        state = registry.get_state(org)
        counters = NotificationService(db).get_counters(org)
        return StatusResponse(
            status=state.status.value,
            connected=state.connected,
            phone_number=state.phone_number,
            qr_code=state.qr_code,
            messages_sent=counters["messagesSent"],
            queued_messages=counters["queuedMessages"],
            last_error=state.last_error,
        ).model_dump(by_alias=True)
    except Exception as e:
        return internal_error(e, "get WhatsApp status")


@router.post("/initialize")
async def initialize(
    body: InitializeRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config: FleetwireConfig = Depends(get_config),
):
    """Start pairing or reconnecting. Returns at once; poll status for the QR code."""
    try:
        org = resolve_organization(body.organization_id, config)
    except DomainError as e:
        return domain_error_response(e)
    try:
        manager = registry.get_or_create(org)
        started = await manager.initialize()
        state = manager.get_state()
        if started:
            return {"success": True, "status": state.status.value}
        if state.status in RESTARTABLE_STATUSES:
            return JSONResponse(
                status_code=500,
                content={"success": False, "status": state.status.value, "error": state.last_error},
            )
        return JSONResponse(
            status_code=409,
            content={
                "success": False,
                "status": state.status.value,
                "error": "WhatsApp client is already initializing or connected",
            },
        )
    except Exception as e:
        return internal_error(e, "initialize WhatsApp")


@router.post("/disconnect")
async def disconnect(
    body: DisconnectRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config: FleetwireConfig = Depends(get_config),
):
    """Stop the client; ``logout`` also unlinks the device."""
    try:
        org = resolve_organization(body.organization_id, config)
    except DomainError as e:
        return domain_error_response(e)
    try:
        manager = registry.get(org)
        if manager is None:
            if body.logout:
                registry.session_store.delete(session_id_for(org))
            return {"success": True, "status": registry.get_state(org).status.value}
        state = await manager.disconnect(logout=body.logout)
        return {"success": True, "status": state.status.value}
    except Exception as e:
        return internal_error(e, "disconnect WhatsApp")


async def _send(
    organization_id: str | None,
    phone_number: str,
    message: str,
    type: NotificationType,
    metadata: dict | None,
    registry: ConnectionRegistry,
    config: FleetwireConfig,
    policy: NotificationPolicy,
    db: Session,
    operation: str,
):
    try:
        org = resolve_organization(organization_id, config)
    except DomainError as e:
        return domain_error_response(e)
    if not is_valid_phone(phone_number):
        return _invalid_phone(phone_number)
    if not message.strip():
        return _invalid_message()
    try:
        workflows = NotificationWorkflows(db, registry, policy)
        result = await workflows.send_manual(org, phone_number, message, type=type, metadata=metadata)
        return dispatch_response(result)
    except Exception as e:
        return internal_error(e, operation)


@router.post("/send")
async def send_message(
    body: SendMessageRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config: FleetwireConfig = Depends(get_config),
    policy: NotificationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Send an operator-composed text message."""
    return await _send(
        body.organization_id, body.phone_number, body.message,
        NotificationType.manual, None,
        registry, config, policy, db, "send WhatsApp message",
    )


@router.post("/template/invoice-reminder")
async def send_invoice_reminder_template(
    body: InvoiceReminderTemplateRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config: FleetwireConfig = Depends(get_config),
    policy: NotificationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Render the invoice reminder template from request data and send it."""
    data = body.data
    try:
        message = invoice_reminder_message(
            customer_name=data.customer_name,
            invoice_number=data.invoice_number,
            total_cents=data.total_cents,
            balance_cents=data.balance_cents if data.balance_cents is not None else data.total_cents,
            due_date=data.due_date,
            organization_name=data.organization_name or policy.default_organization_name,
            currency_symbol=policy.currency_symbol,
        )
    except ValueError as e:
        return error_response(400, "VALIDATION_ERROR", f"Invalid dueDate: {e}")
    return await _send(
        body.organization_id, body.phone_number, message,
        NotificationType.invoice_reminder,
        {"template": "invoice_reminder", "invoiceNumber": data.invoice_number},
        registry, config, policy, db, "send invoice reminder template",
    )


@router.post("/template/trip-assignment")
async def send_trip_assignment_template(
    body: TripAssignmentTemplateRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config: FleetwireConfig = Depends(get_config),
    policy: NotificationPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
):
    """Render the trip assignment template from request data and send it."""
    data = body.data
    try:
        message = trip_assignment_message(
            driver_name=data.driver_name,
            origin_city=data.origin_city,
            destination_city=data.destination_city,
            scheduled_date=data.scheduled_date,
            truck_registration=data.truck_registration,
            customer_name=data.customer_name,
            load_description=data.load_description,
        )
    except ValueError as e:
        return error_response(400, "VALIDATION_ERROR", f"Invalid scheduledDate: {e}")
    return await _send(
        body.organization_id, body.phone_number, message,
        NotificationType.trip_assignment,
        {"template": "trip_assignment"},
        registry, config, policy, db, "send trip assignment template",
    )
