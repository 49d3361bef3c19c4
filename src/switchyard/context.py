"""Per-request dispatch state.

``RequestContext`` is created by the dispatcher for every request and
handed to each handler. It is also published through a ``ContextVar``
so helpers deep in a call stack can reach it without threading it
through arguments.

Thread safety:
    ``ContextVar`` is task-local under asyncio and thread-local under
    free-threading. One context is never shared between requests.
"""

from __future__ import annotations

from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from switchyard.http.request import Request

if TYPE_CHECKING:
    from switchyard.config import SettingValue
    from switchyard.routing.route import RouteEntry


@dataclass(slots=True)
class RequestContext:
    """Mutable state for one request as it moves through the chain.

    ``path`` is relative to the router currently running; ``base_path``
    holds the prefixes stripped by enclosing mounts, so
    ``base_path + path`` is always the original request path. ``params``
    is replaced for every layer that binds parameters.
    """

    request: Request
    settings: Mapping[str, SettingValue] = field(default_factory=dict)
    method: str = ""
    path: str = ""
    base_path: str = ""
    params: dict[str, str] = field(default_factory=dict)
    route: RouteEntry | None = None
    state: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    preprocessed: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if not self.method:
            self.method = self.request.method
        if not self.path:
            self.path = self.request.path

    @property
    def original_path(self) -> str:
        """The full request path, regardless of mount depth."""
        return self.request.path


context_var: ContextVar[RequestContext] = ContextVar("switchyard_context")
"""The context of the request being dispatched. Set by the dispatcher."""


def get_context() -> RequestContext:
    """Return the current request context.

    Raises ``LookupError`` if called outside a dispatch.
    """
    return context_var.get()
