"""Switchyard application class.

Mutable during setup (routes, middleware, mounts, settings).
Frozen at runtime when ``handle()`` or ``__call__()`` is first invoked.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

import anyio

from switchyard._internal.asgi import Receive, Scope, Send
from switchyard._internal.types import ParamFunc
from switchyard.config import SettingValue, Settings
from switchyard.http.request import Request
from switchyard.http.response import Response
from switchyard.routing.pattern import PathSpec
from switchyard.routing.router import RouteBuilder, RouteInfo, Router
from switchyard.server.dispatch import Dispatcher
from switchyard.server.sender import send_response

logger = logging.getLogger("switchyard.server")


class App:
    """The switchyard application: settings plus a root router.

    Usage::

        app = App()
        app.enable("strict routing")

        @app.get("/users/:id")
        def show_user(ctx):
            return {"id": ctx.params["id"]}

        response = app.handle_sync(Request.build("GET", "/users/42"))

    Thread safety:
        The setup phase is single-threaded (decorators at import time).
        The freeze transition uses a Lock + double-check to ensure exactly
        one thread compiles the router tree, even when several ASGI
        workers receive their first request concurrently.
    """

    __slots__ = (
        "_dispatcher",
        "_freeze_lock",
        "_frozen",
        "_router",
        "_shutdown_hooks",
        "_startup_hooks",
        "settings",
    )

    def __init__(
        self,
        settings: Mapping[str, SettingValue] | None = None,
        *,
        router: Router | None = None,
    ) -> None:
        self.settings: Settings = settings if isinstance(settings, Settings) else Settings(settings)
        self._router: Router = router if router is not None else Router(name="app")
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()

        # Compiled state — set during _freeze()
        self._dispatcher: Dispatcher | None = None

    @property
    def router(self) -> Router:
        """The root router. Everything registered on the app lands here."""
        return self._router

    # -- Settings --

    def set(self, name: str, value: SettingValue) -> App:
        """Store a setting, e.g. ``app.set("json spaces", 2)``."""
        self._check_not_frozen()
        self.settings.set(name, value)
        return self

    def setting(self, name: str, default: SettingValue = None) -> SettingValue:
        """Read a setting."""
        return self.settings.get(name, default)

    def enable(self, name: str) -> App:
        return self.set(name, True)

    def disable(self, name: str) -> App:
        return self.set(name, False)

    def enabled(self, name: str) -> bool:
        return self.settings.enabled(name)

    def disabled(self, name: str) -> bool:
        return self.settings.disabled(name)

    # -- Route registration --

    def add_route(self, methods: Any, path: PathSpec, *handlers: Any) -> App:
        self._check_not_frozen()
        self._router.add_route(methods, path, *handlers)
        return self

    def get(self, path: PathSpec, *handlers: Any) -> Any:
        """Register a GET route. Without handlers, returns a decorator."""
        return self._delegate(self._router.get, path, handlers)

    def post(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.post, path, handlers)

    def put(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.put, path, handlers)

    def delete(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.delete, path, handlers)

    def patch(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.patch, path, handlers)

    def head(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.head, path, handlers)

    def options(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.options, path, handlers)

    def all(self, path: PathSpec, *handlers: Any) -> Any:
        return self._delegate(self._router.all, path, handlers)

    def route(self, path: PathSpec) -> RouteBuilder:
        self._check_not_frozen()
        return self._router.route(path)

    # -- Middleware, mounts, params --

    def use(self, *args: Any) -> App:
        """Register middleware or mount routers. See ``Router.use``."""
        self._check_not_frozen()
        self._router.use(*args)
        return self

    def use_error(self, *args: Any) -> App:
        """Register error-handling middleware, called with ``(error, ctx)``."""
        self._check_not_frozen()
        self._router.use_error(*args)
        return self

    def mount(self, prefix: PathSpec | None, router: Router) -> App:
        self._check_not_frozen()
        self._router.mount(prefix, router)
        return self

    def param(self, name: str, fn: ParamFunc | None = None) -> Any:
        self._check_not_frozen()
        result = self._router.param(name, fn)
        return self if fn is not None else result

    # -- Lifecycle hooks --

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register an async or sync shutdown hook via decorator."""
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    # -- Dispatch --

    async def handle(self, request: Request, *, state: Mapping[str, Any] | None = None) -> Response | None:
        """Dispatch *request* through the router tree.

        Returns ``None`` when a handler answered ``Signal.DONE``. *state*
        seeds ``ctx.state`` for this request.
        """
        self._ensure_frozen()
        assert self._dispatcher is not None
        return await self._dispatcher.dispatch(request, state=state)

    def handle_sync(self, request: Request) -> Response | None:
        """Blocking variant of ``handle()`` that runs its own event loop."""
        return anyio.run(self.handle, request)

    def routes(self) -> list[RouteInfo]:
        """Every registered route, flattened across mounts."""
        return self._router.routes()

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point.

        Handles the lifespan scope directly and dispatches HTTP scopes.
        Handlers that write their own response find the ASGI ``send``
        callable in ``ctx.state["asgi.send"]`` and return ``Signal.DONE``.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return
        if scope["type"] != "http":
            logger.warning("Unsupported ASGI scope type %r", scope["type"])
            return

        request = Request.from_asgi(scope, receive)
        response = await self.handle(request, state={"asgi.send": send})
        if response is None:
            return
        await send_response(response, send, head=request.method == "HEAD")

    async def _handle_lifespan(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Run the ASGI lifespan protocol.

        Freezes the app at startup (before the first HTTP request), then
        runs registered startup/shutdown hooks.
        """
        self._ensure_frozen()

        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    for hook in self._startup_hooks:
                        result = hook()
                        if inspect.isawaitable(result):
                            await result
                    await send({"type": "lifespan.startup.complete"})
                except Exception as exc:
                    logger.exception("startup hook failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return

            elif msg_type == "lifespan.shutdown":
                for hook in self._shutdown_hooks:
                    result = hook()
                    if inspect.isawaitable(result):
                        await result
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Internal --

    def _delegate(self, register: Callable[..., Any], path: PathSpec, handlers: tuple[Any, ...]) -> Any:
        self._check_not_frozen()
        result = register(path, *handlers)
        return self if handlers else result

    def _ensure_frozen(self) -> None:
        """Thread-safe freeze with double-check locking."""
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Compile the router tree and lock the settings.

        MUST only be called while holding _freeze_lock.
        """
        self.settings.freeze()
        self._router.compile(self.settings)
        self._dispatcher = Dispatcher(self._router, self.settings)
        logger.debug("app frozen with %d routes", len(self._router.routes()))
        self._frozen = True

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the app after it has started handling requests. "
                "Register routes, middleware, and settings before the first request."
            )
            raise RuntimeError(msg)
