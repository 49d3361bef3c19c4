"""Invoke helper — call sync or async handlers uniformly.

Handlers, error handlers, and param preprocessors can all be ``def`` or
``async def``. The sync/async check lives here and nowhere else.

Usage::

    from switchyard._internal.invoke import invoke

    outcome = await invoke(handler, ctx)
"""

import inspect
from typing import Any


async def invoke(handler: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *handler* and await the result if it's awaitable.

    Works with both sync and async callables::

        # sync — the return value is used as-is
        def load_user(ctx):
            ctx.state["user"] = USERS[ctx.params["id"]]

        # async — the coroutine is awaited first
        async def load_user(ctx):
            ctx.state["user"] = await fetch_user(ctx.params["id"])
    """
    result = handler(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
