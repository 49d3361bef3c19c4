"""Return-value conversion — maps handler results to Response objects.

isinstance-based dispatch, no magic, fully predictable. The Accept
header is never consulted.
"""

from typing import Any

from switchyard.http.response import Redirect, Response


def negotiate(value: Any, *, json_spaces: int | str | None = None) -> Response:
    """Convert a handler's return value to a Response.

    Dispatch order:

    1. ``Response``            -> pass through
    2. ``Redirect``            -> 302 (or given status) with Location header
    3. ``str``                 -> 200, text/html
    4. ``bytes``               -> 200, application/octet-stream
    5. ``dict`` / ``list``     -> 200, application/json (``json_spaces`` indent)
    6. ``(value, int)``        -> negotiate value, override status
    7. ``(value, int, dict)``  -> negotiate value, override status + headers
    """
    match value:
        case Response():
            return value
        case Redirect():
            return (
                Response(body="")
                .with_status(value.status)
                .with_header("Location", value.url)
                .with_headers(dict(value.headers))
            )
        case str():
            return Response(body=value)
        case bytes():
            return Response(body=value, content_type="application/octet-stream")
        case dict() | list():
            return Response.json(value, indent=json_spaces)
        case (inner, int() as status):
            return negotiate(inner, json_spaces=json_spaces).with_status(status)
        case (inner, int() as status, dict() as headers):
            return negotiate(inner, json_spaces=json_spaces).with_status(status).with_headers(headers)
        case _:
            msg = (
                f"Cannot convert {type(value).__name__} to a response. "
                "Return a Response, Redirect, str, bytes, dict, list, "
                "or a (value, status[, headers]) tuple."
            )
            raise TypeError(msg)
