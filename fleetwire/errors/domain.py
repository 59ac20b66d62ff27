"""Typed domain exceptions for API error mapping.

Routes catch specific exception types to return appropriate HTTP status
codes instead of matching on message strings.

Usage:
    # In service layer
    raise NotFoundError("Invoice", invoice_id)

    # In route handler
    try:
        result = await workflows.send_invoice_reminder(...)
    except NotFoundError as e:
        return JSONResponse(status_code=404, ...)
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    code = "NOT_FOUND"

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Operation conflicts with current state. Maps to HTTP 409."""

    code = "CONFLICT"


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    code = "VALIDATION_ERROR"


class NotNotifiableError(ValidationError):
    """Source entity exists but must not be notified (paid, cancelled, no balance)."""

    code = "NOT_NOTIFIABLE"

    def __init__(self, resource_type: str, identifier: str, reason: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' is not notifiable: {reason}")
        self.resource_type = resource_type
        self.identifier = identifier
        self.reason = reason
