"""Switchyard — HTTP path routing and middleware dispatch.

Matches a request's method and path against an ordered tree of routers,
binds path parameters, and runs the matched handler chain with
next / skip-route / skip-router / error control flow.

Basic usage::

    from switchyard import App, Router, Signal

    app = App()
    api = Router(merge_params=True)

    @api.get("/users/:id")
    def show_user(ctx):
        return {"id": ctx.params["id"]}

    app.use("/api", api)

Serve ``app`` with any ASGI server, or call ``app.handle(request)``.
"""

__version__ = "0.1.0"
__all__ = [
    "App",
    "ConfigurationError",
    "ErrorHandler",
    "Fail",
    "HTTPError",
    "Handler",
    "HandlerError",
    "NotFound",
    "Redirect",
    "Request",
    "RequestContext",
    "Response",
    "Router",
    "Settings",
    "Signal",
    "SwitchyardError",
    "get_context",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import switchyard`` fast while providing a clean top-level API.
    """
    if name == "App":
        from switchyard.app import App

        return App

    if name == "Router":
        from switchyard.routing.router import Router

        return Router

    if name in ("Handler", "ErrorHandler"):
        from switchyard.routing import route as _route

        return getattr(_route, name)

    if name == "Settings":
        from switchyard.config import Settings

        return Settings

    if name == "Request":
        from switchyard.http.request import Request

        return Request

    if name in ("Response", "Redirect"):
        from switchyard.http import response as _resp

        return getattr(_resp, name)

    if name in ("Signal", "Fail"):
        from switchyard import control as _control

        return getattr(_control, name)

    if name in ("RequestContext", "get_context"):
        from switchyard import context as _ctx

        return getattr(_ctx, name)

    if name in ("SwitchyardError", "ConfigurationError", "HTTPError", "HandlerError", "NotFound"):
        from switchyard import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
