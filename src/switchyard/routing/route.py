"""Layer and handler-reference frozen dataclasses.

A router's table is an ordered list of layers: ``RouteEntry``,
``MiddlewareEntry`` and ``Mount``. Layers are created during setup and
replaced by compiled copies (with a matcher attached) when the tree
freezes.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeAlias

from switchyard.errors import ConfigurationError
from switchyard.routing.pattern import Matcher, PathMatch, PathPattern, PathSpec

if TYPE_CHECKING:
    from switchyard.routing.router import Router

ParsedSpec: TypeAlias = PathPattern | re.Pattern[str] | tuple[PathPattern | re.Pattern[str], ...]


# -- Handler references --


@dataclass(frozen=True, slots=True)
class Handler:
    """A normal handler: called with the ``RequestContext``."""

    fn: Callable[..., Any]

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))


@dataclass(frozen=True, slots=True)
class ErrorHandler:
    """An error-handling handler: called with ``(error, ctx)``.

    Only runs while an error is pending; normal handlers are skipped
    during that time and error handlers are skipped otherwise.
    """

    fn: Callable[..., Any]

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))


HandlerRef: TypeAlias = Handler | ErrorHandler


def as_ref(obj: Any) -> HandlerRef:
    """Wrap a plain callable as ``Handler``; pass tagged references through."""
    if isinstance(obj, Handler | ErrorHandler):
        return obj
    if not callable(obj):
        msg = f"Handler must be callable, got {type(obj).__name__}: {obj!r}"
        raise ConfigurationError(msg)
    return Handler(obj)


# -- Layers --


@dataclass(frozen=True, slots=True)
class RouteStep:
    """One link of a route's chain, optionally limited to some methods."""

    ref: HandlerRef
    methods: frozenset[str] | None = None

    def handles(self, method: str) -> bool:
        return self.methods is None or method in self.methods


@dataclass(frozen=True, slots=True)
class RouteEntry:
    """A route: path pattern plus an ordered chain of handlers.

    ``methods`` is ``None`` when any step accepts every method.
    """

    path: PathSpec
    pattern: ParsedSpec
    steps: tuple[RouteStep, ...]
    matcher: Matcher | None = None

    @property
    def methods(self) -> frozenset[str] | None:
        methods: set[str] = set()
        for step in self.steps:
            if step.methods is None:
                return None
            methods |= step.methods
        return frozenset(methods)

    @property
    def chain(self) -> tuple[HandlerRef, ...]:
        return tuple(step.ref for step in self.steps)

    def handles(self, method: str) -> bool:
        """True if some step runs for *method*. HEAD falls back to GET."""
        return any(step.handles(self._effective(method)) for step in self.steps)

    def chain_for(self, method: str) -> tuple[HandlerRef, ...]:
        """The handlers that run for *method*, in order."""
        method = self._effective(method)
        return tuple(step.ref for step in self.steps if step.handles(method))

    def _effective(self, method: str) -> str:
        # HEAD runs the GET chain unless some step names HEAD explicitly.
        if method != "HEAD":
            return method
        for step in self.steps:
            if step.methods is not None and "HEAD" in step.methods:
                return method
        return "GET"

    def match(self, path: str) -> PathMatch | None:
        if self.matcher is None:
            msg = "Route matched before the router was compiled."
            raise RuntimeError(msg)
        return self.matcher.match(path)


@dataclass(frozen=True, slots=True)
class MiddlewareEntry:
    """Middleware, run for every request whose path starts with ``prefix``.

    A ``None`` prefix matches every path.
    """

    prefix: PathSpec | None
    pattern: ParsedSpec | None
    ref: HandlerRef
    matcher: Matcher | None = None

    def match(self, path: str) -> PathMatch | None:
        return _match_prefix(self.pattern, self.matcher, path)


@dataclass(frozen=True, slots=True)
class Mount:
    """A child router attached under ``prefix`` (``None`` for the root)."""

    prefix: PathSpec | None
    pattern: ParsedSpec | None
    router: Router
    matcher: Matcher | None = None

    def match(self, path: str) -> PathMatch | None:
        return _match_prefix(self.pattern, self.matcher, path)


Layer: TypeAlias = RouteEntry | MiddlewareEntry | Mount


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of ``Router.match()``: the route and its final params."""

    route: RouteEntry
    params: dict[str, str]


def _match_prefix(pattern: ParsedSpec | None, matcher: Matcher | None, path: str) -> PathMatch | None:
    if pattern is None:
        return PathMatch(params={}, path="", remainder=path)
    if matcher is None:
        msg = "Layer matched before the router was compiled."
        raise RuntimeError(msg)
    return matcher.match(path)
