"""Error code registry with E-XXXX format codes.

This module defines the error code system for Fleetwire, organizing errors
into categories:
- E-1xxx: Business data errors (missing phone, unknown entity)
- E-2xxx: Validation errors
- E-3xxx: WhatsApp transport errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication and pairing errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    DATA = "data"  # E-1xxx
    VALIDATION = "validation"  # E-2xxx
    TRANSPORT = "transport"  # E-3xxx
    SYSTEM = "system"  # E-4xxx
    AUTH = "auth"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the operator should take to resolve.
        is_retryable: Whether the operation can be retried without operator action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Data errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.DATA,
        title="Recipient Has No Phone",
        message_template="{entity} '{identifier}' has no phone number on file.",
        remediation="Add a phone number to the customer or driver record and retry.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.DATA,
        title="Entity Not Found",
        message_template="{entity} '{identifier}' was not found.",
        remediation="Check the identifier and the organization it belongs to.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.DATA,
        title="Entity Not Notifiable",
        message_template="{entity} '{identifier}' is not eligible for a notification: {reason}.",
        remediation="Only unpaid invoices and scheduled trips generate notifications.",
    ),
    # Validation errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.VALIDATION,
        title="Invalid Phone Number",
        message_template="Invalid phone number '{value}'. Expected 7 to 15 digits.",
        remediation="Use the international format without spaces, e.g. 27821234567.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.VALIDATION,
        title="Invalid Message",
        message_template="Message must be between 1 and {max_length} characters.",
        remediation="Shorten or fill in the message text and retry.",
    ),
    # Transport errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.TRANSPORT,
        title="WhatsApp Not Ready",
        message_template="WhatsApp client is not ready (status: {status}).",
        remediation="Initialize the connection and scan the QR code from the dashboard.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.TRANSPORT,
        title="Recipient Not On WhatsApp",
        message_template="Phone number {phone} is not registered on WhatsApp.",
        remediation="Confirm the number with the recipient or contact them another way.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.TRANSPORT,
        title="WhatsApp Send Failed",
        message_template="WhatsApp provider rejected or failed the send: {reason}",
        remediation="Retry later. If the failure persists, re-initialize the connection.",
        is_retryable=True,
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.TRANSPORT,
        title="WhatsApp Send Timed Out",
        message_template="WhatsApp send did not complete within {timeout} seconds.",
        remediation="The message may still be delivered. Check the notification log before retrying.",
        is_retryable=True,
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Internal Error",
        message_template="An unexpected error occurred: {reason}",
        remediation="Check the server logs for details.",
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Notification Sweep Failed",
        message_template="The {sweep} sweep could not select candidates: {reason}",
        remediation="Check database connectivity and retry the sweep.",
        is_retryable=True,
    ),
    # Auth errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="WhatsApp Pairing Failed",
        message_template="WhatsApp rejected the stored session: {reason}",
        remediation="Re-initialize the connection and scan a new QR code.",
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.AUTH,
        title="Unauthorized",
        message_template="Missing or invalid credentials for {resource}.",
        remediation="Send the shared secret configured for this deployment.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up error code definition.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all error codes in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
