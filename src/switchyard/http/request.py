"""Immutable HTTP request descriptor.

Frozen metadata with async body access. The router only reads
``method`` and ``path``; everything else is carried for handlers.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator, Mapping
from dataclasses import dataclass, field
from typing import Any

from switchyard._internal.asgi import Receive, Scope, body_receiver
from switchyard.http.headers import Headers
from switchyard.http.query import QueryParams


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request as handed over by the transport.

    ``path`` is the raw request path without the query string. Percent
    escapes are left in place; route params are decoded when they match.
    Body bytes are pulled lazily from the transport's receive callable
    via ``.body()``, ``.text()`` or ``.json()``.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    http_version: str = "1.1"
    client: tuple[str, int] | None = None

    # Private: transport receive callable for body streaming
    _receive: Receive = field(default_factory=body_receiver, repr=False, compare=False)

    # Private: mutable cache for the body (the dict contents are mutable
    # even though the field reference is frozen)
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")

    @property
    def url(self) -> str:
        """Path plus query string, as originally requested."""
        qs = self.query.raw
        if qs:
            return f"{self.path}?{qs.decode('latin-1')}"
        return self.path

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body.

        The receive callable is consumed once; later calls return the
        cached bytes.
        """
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        while True:
            message = await self._receive()
            if message.get("type") == "http.disconnect":
                break
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def text(self) -> str:
        raw = await self.body()
        return raw.decode("utf-8")

    async def json(self) -> Any:
        raw = await self.body()
        return json_module.loads(raw)

    # -- Factories --

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
    ) -> Request:
        """Build a request without a live connection.

        *path* may carry a query string, which is split off::

            Request.build("GET", "/users/42?expand=orders")
        """
        path_part, _, query_string = path.partition("?")
        return cls(
            method=method.upper(),
            path=path_part or "/",
            headers=Headers.from_mapping(headers),
            query=QueryParams(query_string),
            _receive=body_receiver(body),
        )

    @classmethod
    def from_asgi(cls, scope: Scope, receive: Receive) -> Request:
        """Create a Request from an ASGI HTTP scope and receive callable.

        Prefers ``raw_path`` so percent-escapes reach the matcher intact;
        parameters are decoded once, after matching.
        """
        client = scope.get("client")
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else scope.get("path")
        return cls(
            method=scope["method"].upper(),
            path=path or "/",
            headers=Headers(tuple(scope.get("headers", ()))),
            query=QueryParams(scope.get("query_string", b"")),
            http_version=scope.get("http_version", "1.1"),
            client=tuple(client) if client else None,
            _receive=receive,
        )
