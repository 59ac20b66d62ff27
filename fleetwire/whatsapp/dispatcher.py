"""Outbound message dispatch over a ready WhatsApp connection.

The dispatcher is deliberately thin: it checks readiness, normalizes the
recipient, verifies the recipient is on WhatsApp and sends. It never
retries and never touches notification records; callers decide what a
failure means for their ledger.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum

from fleetwire.utils.redaction import mask_phone, sanitize_error_message
from fleetwire.whatsapp.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15  # E.164 limit
MAX_MESSAGE_LENGTH = 4096

_NON_DIGITS = re.compile(r"\D")


class DispatchErrorCode(str, Enum):
    """Failure outcomes of a send."""

    NOT_READY = "NOT_READY"
    RECIPIENT_UNAVAILABLE = "RECIPIENT_UNAVAILABLE"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    @property
    def registry_code(self) -> str:
        return _REGISTRY_CODES[self]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_REGISTRY_CODES = {
    DispatchErrorCode.NOT_READY: "E-3001",
    DispatchErrorCode.RECIPIENT_UNAVAILABLE: "E-3002",
    DispatchErrorCode.TRANSPORT_ERROR: "E-3003",
    DispatchErrorCode.VALIDATION_ERROR: "E-2001",
}

_HTTP_STATUS = {
    DispatchErrorCode.NOT_READY: 503,
    DispatchErrorCode.RECIPIENT_UNAVAILABLE: 422,
    DispatchErrorCode.TRANSPORT_ERROR: 502,
    DispatchErrorCode.VALIDATION_ERROR: 400,
}


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one send attempt.

    Attributes:
        success: True if the provider accepted the message.
        message_id: Provider message id on success.
        error_code: Failure category, None on success.
        error: Human-readable failure detail.
        recipient: Normalized recipient digits, when normalization succeeded.
    """

    success: bool
    message_id: str | None = None
    error_code: DispatchErrorCode | None = None
    error: str | None = None
    recipient: str | None = None

    @classmethod
    def failure(
        cls, code: DispatchErrorCode, error: str, recipient: str | None = None
    ) -> "DispatchResult":
        return cls(success=False, error_code=code, error=error, recipient=recipient)

    def to_dict(self) -> dict:
        data: dict = {"success": self.success}
        if self.message_id is not None:
            data["messageId"] = self.message_id
        if self.error_code is not None:
            data["errorCode"] = self.error_code.value
            data["error"] = self.error
        return data


def normalize_phone(raw: str) -> str:
    """Reduce a phone number to the digits WhatsApp addresses use.

    Strips the leading '+', spaces and punctuation, and a '00' international
    dialing prefix. No country code is inferred.

    Raises:
        ValueError: If the result is not 7 to 15 digits.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("00"):
        digits = digits[2:]
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise ValueError(
            f"phone number must have {MIN_PHONE_DIGITS}-{MAX_PHONE_DIGITS} digits (got {len(digits)})"
        )
    return digits


def is_valid_phone(raw: str) -> bool:
    try:
        normalize_phone(raw)
    except ValueError:
        return False
    return True


class OutboundDispatcher:
    """Sends plain-text messages through one organization's connection."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def send(self, phone_number: str, message: str) -> DispatchResult:
        """Send ``message`` to ``phone_number``.

        Returns:
            DispatchResult. NOT_READY if the connection is not ready at any
            point before the provider send; the transport is not touched
            in that case.
        """
        state = self._manager.get_state()
        transport = self._manager.ready_transport()
        if transport is None:
            return DispatchResult.failure(
                DispatchErrorCode.NOT_READY,
                f"WhatsApp client is not ready (status: {state.status.value})",
            )

        try:
            digits = normalize_phone(phone_number)
        except ValueError as e:
            return DispatchResult.failure(DispatchErrorCode.VALIDATION_ERROR, str(e))
        if not message or not message.strip():
            return DispatchResult.failure(
                DispatchErrorCode.VALIDATION_ERROR, "message is empty", recipient=digits
            )

        address = f"{digits}{transport.address_suffix}"
        try:
            registered = await transport.is_registered(address)
        except Exception as e:
            return self._transport_failure("registration lookup", e, digits)
        if not registered:
            logger.info("Recipient %s is not on WhatsApp", mask_phone(digits))
            return DispatchResult.failure(
                DispatchErrorCode.RECIPIENT_UNAVAILABLE,
                f"Phone number {digits} is not registered on WhatsApp",
                recipient=digits,
            )

        # The connection may have dropped or been replaced during the lookup
        if self._manager.ready_transport() is not transport:
            status = self._manager.get_state().status
            return DispatchResult.failure(
                DispatchErrorCode.NOT_READY,
                f"WhatsApp client is not ready (status: {status.value})",
                recipient=digits,
            )

        try:
            message_id = await transport.send_text(address, message)
        except Exception as e:
            return self._transport_failure("send", e, digits)

        logger.info("WhatsApp message %s sent to %s", message_id, mask_phone(digits))
        return DispatchResult(success=True, message_id=message_id, recipient=digits)

    def _transport_failure(self, operation: str, exc: Exception, digits: str) -> DispatchResult:
        logger.warning(
            "WhatsApp %s failed for %s: %s: %s",
            operation, mask_phone(digits), type(exc).__name__, exc,
        )
        return DispatchResult.failure(
            DispatchErrorCode.TRANSPORT_ERROR,
            sanitize_error_message(f"{operation} failed: {exc}") or "transport error",
            recipient=digits,
        )


# Sends that outlived their caller's timeout; held so they are not collected
_late_sends: set[asyncio.Task] = set()


def _log_late_result(task: asyncio.Task) -> None:
    _late_sends.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Timed-out WhatsApp send raised afterwards: %s", exc)
        return
    result = task.result()
    logger.info(
        "Timed-out WhatsApp send finished afterwards (success=%s, message_id=%s)",
        result.success, result.message_id,
    )


async def dispatch_with_timeout(
    dispatcher: OutboundDispatcher,
    phone_number: str,
    message: str,
    timeout: float,
) -> DispatchResult:
    """Run a send with a caller-side deadline.

    On timeout the caller gets TRANSPORT_ERROR while the send itself keeps
    running to completion; it is never cancelled or issued a second time.
    """
    task = asyncio.ensure_future(dispatcher.send(phone_number, message))
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        _late_sends.add(task)
        task.add_done_callback(_log_late_result)
        return DispatchResult.failure(
            DispatchErrorCode.TRANSPORT_ERROR,
            f"WhatsApp send did not complete within {timeout:g} seconds",
        )
