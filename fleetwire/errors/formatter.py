"""Application error type and display formatting.

This module provides:
- FleetwireError exception class for application errors
- Error formatting for CLI and log display
"""

from dataclasses import dataclass, field

from fleetwire.errors.registry import get_error


@dataclass
class FleetwireError(Exception):
    """Application error with code, message, and context.

    Attributes:
        code: Error code in E-XXXX format.
        message: Human-readable error message.
        remediation: Action the operator should take to resolve.
        is_retryable: Whether the operation can be retried without operator action.
        status_code: HTTP status the API maps this error to.
        details: Additional context dictionary.
    """

    code: str
    message: str
    remediation: str
    is_retryable: bool = False
    status_code: int = 400
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @classmethod
    def from_code(
        cls, code: str, status_code: int = 400, **kwargs: object
    ) -> "FleetwireError":
        """Create error from registry code with context substitution.

        Args:
            code: Error code in E-XXXX format.
            status_code: HTTP status for the API error handler.
            **kwargs: Context values for message template substitution.
                The special key 'details' is stored on the error rather
                than substituted into the message.

        Returns:
            FleetwireError instance with formatted message.
        """
        details = kwargs.get("details", {})
        if not isinstance(details, dict):
            details = {}

        error_def = get_error(code)
        if not error_def:
            return cls(
                code=code,
                message=f"Unknown error: {code}",
                remediation="Contact support.",
                status_code=status_code,
                details=details,
            )

        message = error_def.message_template
        try:
            template_kwargs = {k: v for k, v in kwargs.items() if k != "details"}
            message = message.format(**template_kwargs)
        except KeyError:
            # Keep template if some placeholders are missing
            pass

        return cls(
            code=error_def.code,
            message=message,
            remediation=error_def.remediation,
            is_retryable=error_def.is_retryable,
            status_code=status_code,
            details=details,
        )


def format_error(error: FleetwireError, include_remediation: bool = True) -> str:
    """Format error for display to an operator.

    Args:
        error: The FleetwireError to format.
        include_remediation: Whether to include remediation steps.

    Returns:
        Multi-line formatted string.
    """
    lines = [f"{error.code}: {error.message}"]
    for key, value in sorted(error.details.items()):
        lines.append(f"  {key}: {value}")
    if include_remediation and error.remediation:
        lines.append(f"  Action: {error.remediation}")
    if error.is_retryable:
        lines.append("  (retryable)")
    return "\n".join(lines)
