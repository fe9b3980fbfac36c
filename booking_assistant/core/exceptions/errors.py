"""
Built-in exception types of the booking engine.
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

from booking_assistant.core.exceptions.base import ProjectError


class ConfigurationError(ProjectError):
    """Invalid or missing configuration (lookup tables, env, settings)."""

    default_code = "CONFIGURATION_ERROR"
    default_http_status = 500


class ValidationError(ProjectError):
    """Invalid date range, out-of-service location or malformed message.

    Raised before anything is merged into the session, so the session keeps
    its last valid values.
    """

    default_code = "VALIDATION_ERROR"
    default_http_status = 400
    default_recoverable = True

    @property
    def field(self) -> Optional[str]:
        return self.details.get("field")


class NotFoundError(ProjectError):
    """Requested session or vehicle not found."""

    default_code = "NOT_FOUND"
    default_http_status = 404


class ExtractionError(ProjectError):
    """The structured extractor returned malformed or unparseable output."""

    default_code = "EXTRACTION_ERROR"
    default_http_status = 422
    default_recoverable = True


class ZeroResultError(ProjectError):
    """Every relaxation level returned nothing: no availability."""

    default_code = "NO_AVAILABILITY"
    default_http_status = 200
    default_recoverable = True

    def __init__(
        self,
        message: str,
        *,
        explanation: str = "",
        attempted_levels: Sequence[int] = (),
        **kwargs: Any,
    ) -> None:
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("explanation", explanation)
        details.setdefault("attempted_levels", list(attempted_levels))
        super().__init__(message, details=details, **kwargs)
        self.explanation = explanation
        self.attempted_levels = tuple(attempted_levels)


class ToolTimeoutError(ProjectError):
    """A tool did not finish within its time budget."""

    default_code = "TOOL_TIMEOUT"
    default_http_status = 504
    default_recoverable = True

    def __init__(self, message: str, *, tool_name: str, **kwargs: Any) -> None:
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("tool", tool_name)
        super().__init__(message, details=details, **kwargs)
        self.tool_name = tool_name


class SearchUnavailableError(ProjectError):
    """Inventory search failed; terminal for the turn, the user may retry."""

    default_code = "SEARCH_UNAVAILABLE"
    default_http_status = 503
    default_recoverable = True


class ExternalServiceError(ProjectError):
    """External collaborator (LLM, weather API, database) failed."""

    default_code = "EXTERNAL_SERVICE_ERROR"
    default_http_status = 502


class RateLimitError(ProjectError):
    """Too many messages in a short window."""

    default_code = "RATE_LIMIT"
    default_http_status = 429
    default_recoverable = True
