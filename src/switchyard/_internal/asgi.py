"""ASGI type aliases.

Only the ASGI adapter and the test client touch these. Handlers see
``Request`` and ``RequestContext``, never raw scopes.
"""

from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any, TypeAlias

Scope: TypeAlias = MutableMapping[str, Any]
Message: TypeAlias = MutableMapping[str, Any]
Receive: TypeAlias = Callable[[], Awaitable[Message]]
Send: TypeAlias = Callable[[Message], Awaitable[None]]


def body_receiver(body: bytes = b"") -> Receive:
    """Build a receive callable that yields *body* once, then disconnects.

    Used wherever a request descriptor is built without a live
    connection (``Request.build``, the test client).
    """
    sent = False

    async def receive() -> Message:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return receive
