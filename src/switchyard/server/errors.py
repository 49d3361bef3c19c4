"""Terminal fallbacks for requests no handler finished.

``not_found`` fires when every layer was tried without a response;
``error_response`` when an error escaped every error handler.
"""

import logging

from switchyard.errors import HandlerError, HTTPError
from switchyard.http.response import Response

logger = logging.getLogger("switchyard.server")


def not_found(method: str, path: str) -> Response:
    """404 with a minimal plain-text body."""
    logger.debug("404 %s %s", method, path)
    return Response.text_plain(f"Cannot {method} {path}", status=404)


def error_response(exc: BaseException, method: str, path: str) -> Response:
    """Map an unhandled error to a Response.

    ``HTTPError`` keeps its status, detail and headers. Anything else is
    logged with its traceback and becomes a 500 carrying the message.
    """
    if isinstance(exc, HTTPError):
        logger.debug("%d %s %s — %s", exc.status, method, path, exc.detail)
        detail = exc.detail or f"Error {exc.status}"
        response = Response.text_plain(detail, status=exc.status)
        for name, value in exc.headers:
            response = response.with_header(name, value)
        return response

    if isinstance(exc, HandlerError):
        logger.error("500 %s %s — %s", method, path, exc)
    else:
        logger.exception("500 %s %s", method, path, exc_info=exc)
    return Response.text_plain(str(exc) or "Internal Server Error", status=500)
