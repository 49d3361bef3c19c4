"""Mountable router with an ordered layer table.

Routes, middleware and mounts are registered during setup and kept in
registration order. ``compile()`` resolves options against the app
settings, compiles every pattern, and freezes the tree.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from typing import Any

from switchyard._internal.types import HandlerFunc, ParamFunc
from switchyard.config import RouterOptions, SettingValue
from switchyard.errors import ConfigurationError
from switchyard.routing.params import merge_params, strip_prefix
from switchyard.routing.pattern import PathSpec, compile_pattern, parse
from switchyard.routing.route import (
    ErrorHandler,
    Handler,
    Layer,
    MiddlewareEntry,
    Mount,
    ParsedSpec,
    RouteEntry,
    RouteMatch,
    RouteStep,
    as_ref,
)

logger = logging.getLogger("switchyard.routing")

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


@dataclass(frozen=True, slots=True)
class RouteInfo:
    """One row of ``Router.routes()``: a route flattened to its full path."""

    methods: frozenset[str] | None
    path: str
    handlers: tuple[str, ...]


class Router:
    """An ordered table of routes, middleware and mounted sub-routers.

    Usage::

        api = Router(merge_params=True)

        @api.get("/users/:id")
        def show_user(ctx):
            return {"id": ctx.params["id"]}

        api.use(log_requests)          # runs for every request reaching api
        app.use("/api", api)           # mount under a prefix

    Options left as ``None`` are filled from the app settings at compile
    time; values given here always win.
    """

    __slots__ = ("_compiled", "_layers", "_param_handlers", "_resolved", "config", "name")

    def __init__(
        self,
        *,
        case_sensitive: bool | None = None,
        strict: bool | None = None,
        merge_params: bool = False,
        name: str | None = None,
    ) -> None:
        self.config = RouterOptions(
            case_sensitive=case_sensitive,
            strict=strict,
            merge_params=merge_params,
        )
        self.name = name
        self._layers: list[Layer] = []
        self._param_handlers: dict[str, list[ParamFunc]] = {}
        self._resolved: RouterOptions | None = None
        self._compiled = False

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        return f"<Router{label} layers={len(self._layers)}>"

    # -- Introspection --

    @property
    def layers(self) -> tuple[Layer, ...]:
        return tuple(self._layers)

    @property
    def compiled(self) -> bool:
        return self._compiled

    @property
    def resolved_options(self) -> RouterOptions:
        """Options after settings resolution. Only valid once compiled."""
        if self._resolved is None:
            msg = "Router options are resolved by compile()."
            raise RuntimeError(msg)
        return self._resolved

    def param_handlers(self, name: str) -> tuple[ParamFunc, ...]:
        return tuple(self._param_handlers.get(name, ()))

    # -- Route registration --

    def add_route(
        self,
        methods: str | Iterable[str] | None,
        path: PathSpec,
        *handlers: HandlerFunc | Handler | ErrorHandler,
    ) -> RouteEntry:
        """Register a route. ``methods=None`` (or ``"*"``) accepts any method."""
        self._check_not_compiled()
        method_set = _normalize_methods(methods)
        refs = [as_ref(h) for h in _flatten_handlers(handlers)]
        if not refs:
            msg = f"Route {path!r} needs at least one handler."
            raise ConfigurationError(msg)
        entry = RouteEntry(
            path=path,
            pattern=_parse_spec(path),
            steps=tuple(RouteStep(ref, method_set) for ref in refs),
        )
        self._layers.append(entry)
        return entry

    def get(self, path: PathSpec, *handlers: Any) -> Any:
        """Register a GET route. Without handlers, returns a decorator."""
        return self._verb("GET", path, handlers)

    def post(self, path: PathSpec, *handlers: Any) -> Any:
        return self._verb("POST", path, handlers)

    def put(self, path: PathSpec, *handlers: Any) -> Any:
        return self._verb("PUT", path, handlers)

    def delete(self, path: PathSpec, *handlers: Any) -> Any:
        return self._verb("DELETE", path, handlers)

    def patch(self, path: PathSpec, *handlers: Any) -> Any:
        return self._verb("PATCH", path, handlers)

    def head(self, path: PathSpec, *handlers: Any) -> Any:
        return self._verb("HEAD", path, handlers)

    def options(self, path: PathSpec, *handlers: Any) -> Any:
        return self._verb("OPTIONS", path, handlers)

    def all(self, path: PathSpec, *handlers: Any) -> Any:
        """Register a route for every method."""
        return self._verb(None, path, handlers)

    def route(self, path: PathSpec) -> RouteBuilder:
        """Start a single route whose chain is built method by method::

            router.route("/book").get(show_book).post(update_book)

        The route occupies one layer, placed where ``route()`` was called.
        """
        self._check_not_compiled()
        entry = RouteEntry(path=path, pattern=_parse_spec(path), steps=())
        self._layers.append(entry)
        return RouteBuilder(self, entry)

    # -- Middleware, mounts, params --

    def use(self, *args: Any) -> Router:
        """Register middleware or mount routers.

        ``use(fn, ...)`` runs for every request reaching this router.
        ``use(prefix, fn, ...)`` runs only under *prefix*, with the prefix
        stripped from ``ctx.path``. ``use(prefix, router)`` mounts.
        """
        self._check_not_compiled()
        prefix, items = _split_prefix(args)
        if not items:
            msg = "use() requires at least one handler or router."
            raise ConfigurationError(msg)
        for item in items:
            if isinstance(item, Router):
                self.mount(prefix, item)
            else:
                self._layers.append(
                    MiddlewareEntry(prefix=prefix, pattern=_parse_prefix(prefix), ref=as_ref(item))
                )
        return self

    def use_error(self, *args: Any) -> Router:
        """Register error-handling middleware, called with ``(error, ctx)``."""
        prefix, items = _split_prefix(args)
        refs = [item if isinstance(item, ErrorHandler) else ErrorHandler(item) for item in items]
        for ref in refs:
            if not callable(ref.fn):
                msg = f"Error handler must be callable, got {ref.fn!r}"
                raise ConfigurationError(msg)
        if prefix is None:
            return self.use(*refs)
        return self.use(prefix, *refs)

    def mount(self, prefix: PathSpec | None, router: Router) -> Router:
        """Attach *router* under *prefix*.

        The child sees the path with the prefix removed (``/`` when nothing
        is left). Mounting a router inside its own subtree is rejected.
        """
        self._check_not_compiled()
        if not isinstance(router, Router):
            msg = f"mount() expects a Router, got {type(router).__name__}"
            raise ConfigurationError(msg)
        if router is self or router.contains(self):
            msg = f"Mounting {router!r} under {prefix!r} would create a cycle."
            raise ConfigurationError(msg)
        self._layers.append(Mount(prefix=prefix, pattern=_parse_prefix(prefix), router=router))
        return self

    def param(self, name: str, fn: ParamFunc | None = None) -> Any:
        """Register a preprocessor for the parameter *name*.

        Runs once per request, the first time a layer of this router binds
        *name*, with ``(ctx, value, name)``. Without *fn*, returns a
        decorator.
        """
        self._check_not_compiled()
        if not isinstance(name, str) or not name:
            msg = f"Parameter name must be a non-empty string, got {name!r}"
            raise ConfigurationError(msg)
        if fn is None:

            def decorator(func: ParamFunc) -> ParamFunc:
                self.param(name, func)
                return func

            return decorator
        if not callable(fn):
            msg = f"Preprocessor for {name!r} must be callable, got {fn!r}"
            raise ConfigurationError(msg)
        self._param_handlers.setdefault(name, []).append(fn)
        return self

    def contains(self, router: Router) -> bool:
        """True if *router* is mounted anywhere below this one."""
        seen: set[int] = set()
        stack = [self]
        while stack:
            current = stack.pop()
            for layer in current._layers:
                if isinstance(layer, Mount):
                    if layer.router is router:
                        return True
                    if id(layer.router) not in seen:
                        seen.add(id(layer.router))
                        stack.append(layer.router)
        return False

    # -- Compilation --

    def compile(self, settings: Mapping[str, SettingValue] | None = None) -> None:
        """Resolve options, compile all patterns and freeze the subtree.

        Idempotent: a compiled router is left untouched.
        """
        if self._compiled:
            return
        settings = settings if settings is not None else {}
        resolved = self.config.resolve(settings)
        case_sensitive = bool(resolved.case_sensitive)
        compiled: list[Layer] = []
        for layer in self._layers:
            if isinstance(layer, RouteEntry):
                matcher = compile_pattern(
                    layer.pattern,
                    case_sensitive=case_sensitive,
                    strict=bool(resolved.strict),
                    end=True,
                )
                compiled.append(replace(layer, matcher=matcher))
                continue
            if isinstance(layer, Mount):
                layer.router.compile(settings)
            if layer.pattern is not None:
                # Prefixes tolerate a trailing slash regardless of strict mode.
                matcher = compile_pattern(
                    layer.pattern,
                    case_sensitive=case_sensitive,
                    strict=False,
                    end=False,
                )
                layer = replace(layer, matcher=matcher)
            compiled.append(layer)
        self._layers = compiled
        self._resolved = resolved
        self._compiled = True
        logger.debug("compiled %r (%s)", self, resolved)

    def _check_not_compiled(self) -> None:
        if self._compiled:
            msg = (
                "Cannot modify a router after it has been compiled. "
                "Register routes, middleware and mounts before the app "
                "handles its first request."
            )
            raise RuntimeError(msg)

    def _replace_layer(self, old: Layer, new: Layer) -> None:
        self._check_not_compiled()
        for index, layer in enumerate(self._layers):
            if layer is old:
                self._layers[index] = new
                return
        msg = f"Layer {old!r} is not registered on {self!r}"
        raise ValueError(msg)

    # -- Lookup --

    def match(self, method: str, path: str) -> RouteMatch | None:
        """Find the first route for *method* and *path* without running it.

        Middleware is ignored; mounts are followed, params are scoped per
        ``merge_params``.
        """
        if not self._compiled:
            msg = "Router.match() requires compile() first."
            raise RuntimeError(msg)
        return self._match(method.upper(), path, {})

    def _match(self, method: str, path: str, inherited: dict[str, str]) -> RouteMatch | None:
        for layer in self._layers:
            if isinstance(layer, RouteEntry):
                if not layer.handles(method):
                    continue
                found = layer.match(path)
                if found is not None:
                    return RouteMatch(route=layer, params={**inherited, **found.params})
            elif isinstance(layer, Mount):
                found = layer.match(path)
                if found is None:
                    continue
                _, remaining = strip_prefix(path, found.path)
                child = layer.router
                scope = merge_params(inherited, found.params) if child.config.merge_params else {}
                result = child._match(method, remaining, scope)
                if result is not None:
                    return result
        return None

    def routes(self) -> list[RouteInfo]:
        """Flatten the tree into ``RouteInfo`` rows, in dispatch order."""
        return list(self._walk_routes(""))

    def _walk_routes(self, base: str) -> Iterator[RouteInfo]:
        for layer in self._layers:
            if isinstance(layer, RouteEntry):
                yield RouteInfo(
                    methods=layer.methods,
                    path=base + _describe(layer.path),
                    handlers=tuple(ref.name for ref in layer.chain),
                )
            elif isinstance(layer, Mount):
                prefix = _describe(layer.prefix) if layer.prefix is not None else ""
                yield from layer.router._walk_routes(base + prefix.rstrip("/"))

    # -- Internal --

    def _verb(self, method: str | None, path: PathSpec, handlers: tuple[Any, ...]) -> Any:
        if handlers:
            self.add_route(method, path, *handlers)
            return self

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add_route(method, path, func)
            return func

        return decorator


class RouteBuilder:
    """Chainable builder returned by ``Router.route()``.

    Each call appends steps to the same route; a step only runs for the
    methods it was registered under.
    """

    __slots__ = ("_entry", "_router")

    def __init__(self, router: Router, entry: RouteEntry) -> None:
        self._router = router
        self._entry = entry

    @property
    def entry(self) -> RouteEntry:
        return self._entry

    def _add(self, method: str | None, handlers: tuple[Any, ...]) -> RouteBuilder:
        method_set = _normalize_methods(method)
        refs = [as_ref(h) for h in _flatten_handlers(handlers)]
        if not refs:
            msg = f"Route {self._entry.path!r} needs at least one handler per method."
            raise ConfigurationError(msg)
        steps = tuple(RouteStep(ref, method_set) for ref in refs)
        new = replace(self._entry, steps=(*self._entry.steps, *steps))
        self._router._replace_layer(self._entry, new)
        self._entry = new
        return self

    def get(self, *handlers: Any) -> RouteBuilder:
        return self._add("GET", handlers)

    def post(self, *handlers: Any) -> RouteBuilder:
        return self._add("POST", handlers)

    def put(self, *handlers: Any) -> RouteBuilder:
        return self._add("PUT", handlers)

    def delete(self, *handlers: Any) -> RouteBuilder:
        return self._add("DELETE", handlers)

    def patch(self, *handlers: Any) -> RouteBuilder:
        return self._add("PATCH", handlers)

    def head(self, *handlers: Any) -> RouteBuilder:
        return self._add("HEAD", handlers)

    def options(self, *handlers: Any) -> RouteBuilder:
        return self._add("OPTIONS", handlers)

    def all(self, *handlers: Any) -> RouteBuilder:
        return self._add(None, handlers)


# -- Helpers --


def _normalize_methods(methods: str | Iterable[str] | None) -> frozenset[str] | None:
    if methods is None or methods == "*":
        return None
    if isinstance(methods, str):
        methods = (methods,)
    normalized = frozenset(m.upper() for m in methods)
    if not normalized:
        msg = "A route needs at least one method."
        raise ConfigurationError(msg)
    if "*" in normalized:
        return None
    return normalized


def _flatten_handlers(handlers: Iterable[Any]) -> Iterator[Any]:
    for handler in handlers:
        if isinstance(handler, list | tuple):
            yield from _flatten_handlers(handler)
        else:
            yield handler


def _is_path_spec(value: Any) -> bool:
    if isinstance(value, str | re.Pattern):
        return True
    return (
        isinstance(value, list | tuple)
        and bool(value)
        and all(isinstance(item, str | re.Pattern) for item in value)
    )


def _split_prefix(args: tuple[Any, ...]) -> tuple[PathSpec | None, list[Any]]:
    if args and _is_path_spec(args[0]):
        return args[0], list(_flatten_handlers(args[1:]))
    return None, list(_flatten_handlers(args))


def _parse_spec(spec: PathSpec) -> ParsedSpec:
    if isinstance(spec, re.Pattern):
        return spec
    if isinstance(spec, str):
        return parse(spec)
    if isinstance(spec, list | tuple) and spec:
        return tuple(item if isinstance(item, re.Pattern) else parse(item) for item in spec)
    msg = f"Invalid route path: {spec!r}"
    raise ConfigurationError(msg)


def _parse_prefix(prefix: PathSpec | None) -> ParsedSpec | None:
    """Parse a mount or middleware prefix. ``/`` means "every path"."""
    if prefix is None or prefix in ("", "/"):
        return None
    return _parse_spec(prefix)


def _describe(spec: PathSpec) -> str:
    if isinstance(spec, re.Pattern):
        return f"re:{spec.pattern}"
    if isinstance(spec, str):
        return spec
    return "|".join(_describe(item) for item in spec)
