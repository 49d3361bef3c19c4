"""Chain-control outcomes.

Handlers return one of these (or a response value) to tell the
dispatcher what to do next::

    def require_admin(ctx):
        if not ctx.state.get("admin"):
            return Signal.SKIP_ROUTE
        return Signal.NEXT

Returning ``None`` is the same as ``Signal.NEXT``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Signal(Enum):
    """Non-error control-flow outcomes."""

    NEXT = "next"
    """Continue with the next link of the chain."""

    SKIP_ROUTE = "route"
    """Abandon the current route; resume matching at the next layer."""

    SKIP_ROUTER = "router"
    """Abandon the current router; resume at the parent's next layer."""

    DONE = "done"
    """The handler wrote the response itself; stop without producing one."""


@dataclass(frozen=True, slots=True)
class Fail:
    """Divert to error handling with *error*.

    Equivalent to raising *error* from the handler. Non-exception values
    are wrapped in ``HandlerError`` before error handlers see them.
    """

    error: Any
