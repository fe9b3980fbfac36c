"""
Root of the booking engine's error hierarchy.

An engine error knows three things beyond its message: a machine-readable
``code``, the HTTP status the API should answer with, and whether it is
``recoverable``. A recoverable error ends the current turn only; the user can
rephrase or retry and the session carries on.
"""
from __future__ import annotations

import traceback
from typing import Any, Dict, Optional, Type


class ProjectError(Exception):
    """Base class for every error the engine raises on purpose.

    Subclasses set ``default_code``, ``default_http_status`` and
    ``default_recoverable``; any of them can be overridden per instance.
    """

    default_code: str = "ERROR"
    default_http_status: int = 500
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        cls = type(self)
        self.message = message
        self.code = cls.default_code if code is None else code
        self.http_status = cls.default_http_status if http_status is None else http_status
        self.recoverable = cls.default_recoverable if recoverable is None else recoverable
        self.details: Dict[str, Any] = dict(details or {})
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return "%s(%r, code=%r, http_status=%d, recoverable=%s)" % (
            type(self).__name__, self.message, self.code, self.http_status, self.recoverable,
        )

    def to_dict(self, *, include_traceback: bool = False) -> Dict[str, Any]:
        """Error payload for turn responses and audit events.

        The cause's traceback is only attached on request; it never goes to
        API clients.
        """
        payload: Dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
        }
        if self.details:
            payload["details"] = self.details
        if self.cause is None:
            return payload
        payload["cause"] = str(self.cause)
        if include_traceback:
            payload["cause_traceback"] = traceback.format_exception(
                type(self.cause), self.cause, self.cause.__traceback__
            )
        return payload


def exception_factory(
    name: str,
    *,
    code: Optional[str] = None,
    http_status: int = 500,
    recoverable: bool = False,
    base: Type[ProjectError] = ProjectError,
) -> Type[ProjectError]:
    """Build a one-off error subclass, e.g. for a provider-specific failure.

    ``code`` defaults to the upper-cased class name::

        QuoteExpiredError = exception_factory("QuoteExpiredError", http_status=409, recoverable=True)
    """
    attrs = {
        "default_code": code or name.upper().replace(" ", "_"),
        "default_http_status": http_status,
        "default_recoverable": recoverable,
    }
    return type(name, (base,), attrs)
