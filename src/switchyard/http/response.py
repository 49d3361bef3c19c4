"""HTTP response descriptor with chainable .with_*() transformation API.

Each transformation returns a new Response. Immutable by convention,
built incrementally by design.
"""

from __future__ import annotations

import json as json_module
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class Response:
    """An HTTP response built through immutable transformations.

    Construct with a body, then chain ``.with_*()`` calls to set status
    and headers. Each call returns a new ``Response``.
    """

    body: str | bytes = ""
    status: int = 200
    content_type: str = "text/html; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()

    # -- Chainable transformations --

    def with_status(self, status: int) -> Response:
        """Return a new Response with a different status code."""
        return replace(self, status=status)

    def with_header(self, name: str, value: str) -> Response:
        """Return a new Response with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))

    def with_headers(self, headers: Mapping[str, str]) -> Response:
        """Return a new Response with additional headers."""
        new = tuple(headers.items())
        return replace(self, headers=(*self.headers, *new))

    def with_content_type(self, content_type: str) -> Response:
        return replace(self, content_type=content_type)

    # -- Constructors --

    @classmethod
    def text_plain(cls, body: str, status: int = 200) -> Response:
        return cls(body=body, status=status, content_type="text/plain; charset=utf-8")

    @classmethod
    def json(cls, value: Any, *, status: int = 200, indent: int | str | None = None) -> Response:
        """Serialize *value* as a JSON response.

        *indent* is passed to ``json.dumps``; the dispatcher fills it from
        the ``"json spaces"`` setting when a handler returns a dict or list.
        """
        return cls(
            body=json_module.dumps(value, default=str, indent=indent),
            status=status,
            content_type="application/json; charset=utf-8",
        )

    # -- Body helpers --

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes."""
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    @property
    def text(self) -> str:
        """Body as string."""
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body

    def header(self, name: str) -> str | None:
        """Return the first header value for *name* (case-insensitive)."""
        name_lower = name.lower()
        if name_lower == "content-type":
            return self.content_type
        for key, value in self.headers:
            if key.lower() == name_lower:
                return value
        return None

    def json_body(self) -> Any:
        """Parse the body as JSON."""
        return json_module.loads(self.body_bytes)


@dataclass(frozen=True, slots=True)
class Redirect:
    """A redirect response."""

    url: str
    status: int = 302
    headers: tuple[tuple[str, str], ...] = ()
