"""Request dispatch — walks the router tree and runs matched chains.

The walk is depth-first and in registration order, driven by an
explicit frame stack (one frame per router being visited) rather than
recursion or continuation callbacks. Each matched layer runs to an
outcome that decides where the walk goes next:

    None / Signal.NEXT     next link, then next layer
    Signal.SKIP_ROUTE      rest of the route skipped, next layer
    Signal.SKIP_ROUTER     current frame popped, parent's next layer
    Signal.DONE            stop, no response descriptor
    Fail(err) / raise      pending error; only error handlers run
    response value         stop with that response
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from switchyard._internal.invoke import invoke
from switchyard.config import JSON_SPACES, SettingValue
from switchyard.context import RequestContext, context_var
from switchyard.control import Fail, Signal
from switchyard.errors import HandlerError, HTTPError
from switchyard.http.request import Request
from switchyard.http.response import Response
from switchyard.routing.params import merge_params, named_params, strip_prefix
from switchyard.routing.pattern import PathMatch
from switchyard.routing.route import ErrorHandler, HandlerRef, Layer, Mount, RouteEntry
from switchyard.routing.router import Router
from switchyard.server.errors import error_response, not_found
from switchyard.server.negotiation import negotiate

logger = logging.getLogger("switchyard.server")


@dataclass(slots=True)
class _Frame:
    """Walk position inside one router."""

    router: Router
    layers: tuple[Layer, ...]
    path: str
    base_path: str
    inherited: dict[str, str] = field(default_factory=dict)
    index: int = 0


@dataclass(frozen=True, slots=True)
class _Finish:
    """Terminal outcome. ``response`` is ``None`` after ``Signal.DONE``."""

    response: Response | None


_Outcome: TypeAlias = Signal | _Finish


class Dispatcher:
    """Runs requests against a compiled router tree.

    Usage::

        router.compile(settings)
        dispatcher = Dispatcher(router, settings)
        response = await dispatcher.dispatch(Request.build("GET", "/users/42"))

    Stateless between requests: all per-request state lives on the
    ``RequestContext``, so one dispatcher serves concurrent requests.
    """

    __slots__ = ("_json_spaces", "_root", "_settings")

    def __init__(self, root: Router, settings: Mapping[str, SettingValue] | None = None) -> None:
        if not root.compiled:
            msg = "Dispatcher requires a compiled router; call router.compile() first."
            raise RuntimeError(msg)
        self._root = root
        self._settings: Mapping[str, SettingValue] = settings if settings is not None else {}
        spaces = self._settings.get(JSON_SPACES)
        self._json_spaces = spaces if isinstance(spaces, int | str) and not isinstance(spaces, bool) else None

    async def dispatch(
        self,
        request: Request,
        *,
        state: Mapping[str, Any] | None = None,
    ) -> Response | None:
        """Produce the response for *request*.

        Returns ``None`` only when a handler answered ``Signal.DONE``.
        *state* seeds ``ctx.state``.
        """
        ctx = RequestContext(request=request, settings=self._settings, state=dict(state or {}))
        token = context_var.set(ctx)
        try:
            return await self._walk(ctx)
        finally:
            context_var.reset(token)

    # -- Walk --

    async def _walk(self, ctx: RequestContext) -> Response | None:
        method = ctx.method
        allowed: set[str] = set()
        stack = [_Frame(self._root, self._root.layers, ctx.request.path, "")]

        while stack:
            frame = stack[-1]
            if frame.index >= len(frame.layers):
                stack.pop()
                continue
            layer = frame.layers[frame.index]
            frame.index += 1

            if isinstance(layer, RouteEntry):
                outcome = await self._run_route(layer, frame, ctx, allowed)
            elif isinstance(layer, Mount):
                found = _match(layer, frame.path, ctx)
                if found is None:
                    continue
                base, remaining = strip_prefix(frame.path, found.path)
                self._enter(ctx, frame, found.params, remaining, base, route=None)
                outcome = await self._preprocess(frame.router, found.params, ctx)
                if outcome is not Signal.NEXT:
                    if outcome is Signal.SKIP_ROUTER:
                        stack.pop()
                    elif isinstance(outcome, _Finish):
                        return outcome.response
                    continue
                child = layer.router
                inherited = named_params(ctx.params) if child.config.merge_params else {}
                stack.append(_Frame(child, child.layers, remaining, ctx.base_path, inherited))
                continue
            else:
                if _skipped(layer.ref, ctx):
                    continue
                found = _match(layer, frame.path, ctx)
                if found is None:
                    continue
                base, remaining = strip_prefix(frame.path, found.path)
                self._enter(ctx, frame, found.params, remaining, base, route=None)
                outcome = await self._preprocess(frame.router, found.params, ctx)
                if outcome is Signal.NEXT:
                    outcome = await self._run_chain((layer.ref,), ctx)

            if isinstance(outcome, _Finish):
                return outcome.response
            if outcome is Signal.SKIP_ROUTER:
                stack.pop()

        path = ctx.request.path
        if ctx.error is not None:
            return error_response(ctx.error, method, path)
        if method == "OPTIONS" and allowed:
            allow = ", ".join(sorted(allowed))
            return Response.text_plain(allow).with_header("Allow", allow)
        return not_found(method, path)

    async def _run_route(
        self,
        layer: RouteEntry,
        frame: _Frame,
        ctx: RequestContext,
        allowed: set[str],
    ) -> _Outcome:
        # Routes never see a pending error raised outside their own chain.
        if ctx.error is not None:
            return Signal.NEXT
        found = _match(layer, frame.path, ctx)
        if found is None:
            return Signal.NEXT
        if not layer.handles(ctx.method):
            if ctx.method == "OPTIONS":
                allowed.update(_allowed_methods(layer))
            return Signal.NEXT
        self._enter(ctx, frame, found.params, frame.path, "", route=layer)
        outcome = await self._preprocess(frame.router, found.params, ctx)
        if outcome is not Signal.NEXT:
            return outcome
        outcome = await self._run_chain(layer.chain_for(ctx.method), ctx)
        return Signal.NEXT if outcome is Signal.SKIP_ROUTE else outcome

    @staticmethod
    def _enter(
        ctx: RequestContext,
        frame: _Frame,
        params: dict[str, str],
        path: str,
        base: str,
        *,
        route: RouteEntry | None,
    ) -> None:
        ctx.path = path
        ctx.base_path = frame.base_path + base
        ctx.params = merge_params(frame.inherited, params)
        ctx.route = route

    # -- Chains --

    async def _run_chain(self, refs: tuple[HandlerRef, ...], ctx: RequestContext) -> _Outcome:
        """Run *refs* in order until one leaves the chain.

        Normal handlers are skipped while an error is pending; error
        handlers are skipped while none is.
        """
        for ref in refs:
            if _skipped(ref, ctx):
                continue
            is_error_handler = isinstance(ref, ErrorHandler)
            try:
                if is_error_handler:
                    result = await invoke(ref.fn, ctx.error, ctx)
                else:
                    result = await invoke(ref.fn, ctx)
            except Exception as exc:
                logger.debug("handler %s raised %r", ref.name, exc)
                ctx.error = exc
                continue
            outcome = self._settle(ctx, result, clears_error=is_error_handler)
            if outcome is not Signal.NEXT:
                return outcome
        return Signal.NEXT

    async def _preprocess(
        self,
        router: Router,
        params: dict[str, str],
        ctx: RequestContext,
    ) -> _Outcome:
        """Run *router*'s param preprocessors for names bound by this layer.

        Each name is preprocessed at most once per request. A failing
        preprocessor skips the layer. Its error becomes pending unless an
        earlier one already is, in which case the earlier error is kept.
        """
        for name in params:
            handlers = router.param_handlers(name)
            if not handlers or name in ctx.preprocessed:
                continue
            ctx.preprocessed.add(name)
            value = ctx.params[name]
            for fn in handlers:
                pending = ctx.error
                try:
                    result = await invoke(fn, ctx, value, name)
                except Exception as exc:
                    logger.debug("param preprocessor for %r raised %r", name, exc)
                    ctx.error = pending if pending is not None else exc
                    return Signal.SKIP_ROUTE
                outcome = self._settle(ctx, result, clears_error=False)
                if ctx.error is not pending:
                    if pending is not None:
                        ctx.error = pending
                    return Signal.SKIP_ROUTE
                if outcome is not Signal.NEXT:
                    return outcome
        return Signal.NEXT

    def _settle(self, ctx: RequestContext, result: Any, *, clears_error: bool) -> _Outcome:
        """Interpret a handler's return value."""
        if isinstance(result, Signal):
            if result is Signal.DONE:
                return _Finish(None)
            if clears_error:
                ctx.error = None
            return result
        if result is None:
            if clears_error:
                ctx.error = None
            return Signal.NEXT
        if isinstance(result, Fail):
            error = result.error
            ctx.error = error if isinstance(error, BaseException) else HandlerError(error)
            return Signal.NEXT
        try:
            response = negotiate(result, json_spaces=self._json_spaces)
        except Exception as exc:
            ctx.error = exc
            return Signal.NEXT
        return _Finish(response)


def _match(layer: Layer, path: str, ctx: RequestContext) -> PathMatch | None:
    """Match *layer*; a param that fails to decode becomes the pending error."""
    try:
        return layer.match(path)
    except HTTPError as exc:
        ctx.error = exc
        return None


def _skipped(ref: HandlerRef, ctx: RequestContext) -> bool:
    return isinstance(ref, ErrorHandler) is (ctx.error is None)


def _allowed_methods(layer: RouteEntry) -> set[str]:
    methods = set(layer.methods or ())
    if "GET" in methods:
        methods.add("HEAD")
    return methods
