"""Error handling framework for Fleetwire.

This package provides:
- Error code registry with E-XXXX format codes
- FleetwireError application exception and formatting
- Typed domain exceptions for route-level HTTP mapping

Error categories:
- E-1xxx: Business data errors
- E-2xxx: Validation errors
- E-3xxx: WhatsApp transport errors
- E-4xxx: System/internal errors
- E-5xxx: Authentication and pairing errors
"""

from fleetwire.errors.domain import (
    ConflictError,
    DomainError,
    NotFoundError,
    NotNotifiableError,
    ValidationError,
)
from fleetwire.errors.formatter import FleetwireError, format_error
from fleetwire.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Formatter
    "FleetwireError",
    "format_error",
    # Domain
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "NotNotifiableError",
]
