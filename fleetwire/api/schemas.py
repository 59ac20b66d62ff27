"""Pydantic schemas for API request/response validation.

Field names on the wire are camelCase to match the dashboard client;
Python attributes stay snake_case.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from fleetwire.whatsapp.dispatcher import MAX_MESSAGE_LENGTH


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# WhatsApp control


class InitializeRequest(_CamelModel):
    """Request body for starting a WhatsApp client."""

    organization_id: str | None = Field(None, alias="organizationId")


class DisconnectRequest(_CamelModel):
    """Request body for stopping a WhatsApp client."""

    organization_id: str | None = Field(None, alias="organizationId")
    logout: bool = Field(False, description="Also unlink the device and delete stored credentials")


class StatusResponse(_CamelModel):
    """Connection snapshot plus dispatch counters."""

    success: bool = True
    status: str
    connected: bool
    phone_number: str | None = Field(None, alias="phoneNumber")
    qr_code: str | None = Field(None, alias="qrCode")
    messages_sent: int = Field(0, alias="messagesSent")
    queued_messages: int = Field(0, alias="queuedMessages")
    last_error: str | None = Field(None, alias="lastError")


# Sends


class SendMessageRequest(_CamelModel):
    """Operator-composed message to one phone number."""

    phone_number: str = Field(..., alias="phoneNumber")
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    organization_id: str | None = Field(None, alias="organizationId")


class InvoiceReminderData(_CamelModel):
    """Invoice fields for the reminder template."""

    customer_name: str = Field(..., min_length=1, alias="customerName")
    invoice_number: str = Field(..., min_length=1, alias="invoiceNumber")
    total_cents: int = Field(..., alias="totalCents")
    balance_cents: int | None = Field(None, alias="balanceCents")
    due_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", alias="dueDate")
    organization_name: str | None = Field(None, alias="organizationName")


class TripAssignmentData(_CamelModel):
    """Trip fields for the assignment template."""

    driver_name: str = Field(..., min_length=1, alias="driverName")
    origin_city: str = Field(..., min_length=1, alias="originCity")
    destination_city: str = Field(..., min_length=1, alias="destinationCity")
    scheduled_date: str = Field(..., alias="scheduledDate")
    truck_registration: str | None = Field(None, alias="truckRegistration")
    customer_name: str | None = Field(None, alias="customerName")
    load_description: str | None = Field(None, alias="loadDescription")


class InvoiceReminderTemplateRequest(_CamelModel):
    phone_number: str = Field(..., alias="phoneNumber")
    organization_id: str | None = Field(None, alias="organizationId")
    data: InvoiceReminderData


class TripAssignmentTemplateRequest(_CamelModel):
    phone_number: str = Field(..., alias="phoneNumber")
    organization_id: str | None = Field(None, alias="organizationId")
    data: TripAssignmentData


# Webhooks


class TripAssignedWebhook(_CamelModel):
    """Dashboard event: a driver was assigned to a trip."""

    trip_id: str = Field(..., min_length=1, alias="tripId")
    organization_id: str = Field(..., min_length=1, alias="organizationId")
    send_immediately: bool = Field(True, alias="sendImmediately")
    force: bool = False


class InvoiceReminderWebhook(_CamelModel):
    """Dashboard event: an operator asked for a payment reminder."""

    invoice_id: str = Field(..., min_length=1, alias="invoiceId")
    organization_id: str = Field(..., min_length=1, alias="organizationId")
    send_immediately: bool = Field(True, alias="sendImmediately")


# Cron


class SweepResponse(BaseModel):
    """Aggregated result of a sweep over one or more organizations."""

    success: bool = True
    sweep: str
    processed: int
    sent: int
    failed: int
    errors: list[str] = Field(default_factory=list)
    organizations: list[dict[str, Any]] = Field(default_factory=list)


# Error response schema


class ErrorResponse(BaseModel):
    """Standard error response."""

    error_code: str
    message: str
    remediation: str | None = None
    details: dict | None = None
