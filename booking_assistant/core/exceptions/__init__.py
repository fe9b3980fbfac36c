"""
Booking engine exception system.

Usage:
    from booking_assistant.core.exceptions import ValidationError, ZeroResultError

    raise ValidationError("Return date must be after pickup", details={"field": "end_date"})

    # Ad-hoc type
    QuoteExpiredError = exception_factory("QuoteExpiredError", http_status=409, recoverable=True)
"""
from booking_assistant.core.exceptions.base import ProjectError, exception_factory
from booking_assistant.core.exceptions.errors import (
    ConfigurationError,
    ExternalServiceError,
    ExtractionError,
    NotFoundError,
    RateLimitError,
    SearchUnavailableError,
    ToolTimeoutError,
    ValidationError,
    ZeroResultError,
)

__all__ = [
    "ProjectError",
    "exception_factory",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "ExtractionError",
    "ZeroResultError",
    "ToolTimeoutError",
    "SearchUnavailableError",
    "ExternalServiceError",
    "RateLimitError",
]
