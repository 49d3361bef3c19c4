"""Switchyard exception hierarchy.

Shared across Router, Dispatcher, App, and handlers so every module
raises and catches the same types.
"""

from dataclasses import dataclass
from typing import Any


class SwitchyardError(Exception):
    """Base for all switchyard-specific errors."""


class ConfigurationError(SwitchyardError):
    """Raised when a route, mount, or pattern is registered incorrectly.

    Always raised at registration time, never during dispatch.
    """


@dataclass(frozen=True, slots=True)
class HTTPError(SwitchyardError):
    """An error that maps directly to an HTTP status code.

    Raised (or passed to ``Fail``) by handlers and middleware. When no
    error handler in the chain deals with it, the fallback response uses
    its status, detail, and headers.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818 — conventional name in web frameworks
    """404 — no layer terminated the request."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class HandlerError(SwitchyardError):
    """Wraps a non-exception value signalled through ``Fail(...)``.

    Handlers may fail with any value (a string, a dict); the dispatcher
    wraps it so error handlers always receive an exception. The original
    value stays available as ``.value``.
    """

    def __init__(self, value: Any) -> None:
        super().__init__(str(value))
        self.value = value
