"""Tests for switchyard.server.dispatch — chain control flow and fallbacks."""

import logging

import pytest

from switchyard.app import App
from switchyard.context import get_context
from switchyard.control import Fail, Signal
from switchyard.errors import HandlerError, HTTPError
from switchyard.http.request import Request
from switchyard.http.response import Redirect, Response
from switchyard.routing.route import ErrorHandler
from switchyard.routing.router import Router
from switchyard.server.dispatch import Dispatcher
from switchyard.testing import TestClient


async def _call(app: App, path: str, method: str = "GET") -> Response | None:
    return await app.handle(Request.build(method, path))


def _recorder(calls: list[str], label: str, result=None):
    def handler(ctx):
        calls.append(label)
        return result

    return handler


class TestBasicDispatch:
    async def test_handler_response(self) -> None:
        app = App()
        app.get("/hello", lambda ctx: "hi")
        response = await _call(app, "/hello")
        assert response.status == 200
        assert response.text == "hi"

    async def test_async_handler(self) -> None:
        app = App()

        @app.get("/hello")
        async def hello(ctx):
            return "async hi"

        assert (await _call(app, "/hello")).text == "async hi"

    async def test_params_on_context(self) -> None:
        app = App()
        app.get("/users/:userId/books/:bookId", lambda ctx: dict(ctx.params))
        response = await _call(app, "/users/34/books/8989")
        assert response.json_body() == {"userId": "34", "bookId": "8989"}

    async def test_chain_runs_in_order(self) -> None:
        calls: list[str] = []
        app = App()
        app.get("/x", _recorder(calls, "a"), _recorder(calls, "b", Signal.NEXT), lambda ctx: "done")
        assert (await _call(app, "/x")).text == "done"
        assert calls == ["a", "b"]

    async def test_first_response_stops_walk(self) -> None:
        calls: list[str] = []
        app = App()
        app.get("/x", lambda ctx: "first")
        app.get("/x", _recorder(calls, "second"))
        assert (await _call(app, "/x")).text == "first"
        assert calls == []

    async def test_route_falls_through_on_next(self) -> None:
        app = App()
        app.get("/users/:id", lambda ctx: None)
        app.get("/users/me", lambda ctx: "me")
        assert (await _call(app, "/users/me")).text == "me"

    async def test_context_var_set_during_dispatch(self) -> None:
        seen = []
        app = App()

        @app.get("/x")
        def handler(ctx):
            seen.append(get_context() is ctx)
            return "ok"

        await _call(app, "/x")
        assert seen == [True]
        with pytest.raises(LookupError):
            get_context()

    async def test_state_seeded(self) -> None:
        app = App()
        app.get("/x", lambda ctx: ctx.state["user"])
        response = await app.handle(Request.build("GET", "/x"), state={"user": "ada"})
        assert response.text == "ada"


class TestSkipSignals:
    async def test_skip_route(self) -> None:
        calls: list[str] = []
        app = App()
        app.get("/x", _recorder(calls, "a", Signal.SKIP_ROUTE), _recorder(calls, "b"))
        app.get("/x", _recorder(calls, "c", "from c"))
        assert (await _call(app, "/x")).text == "from c"
        assert calls == ["a", "c"]

    async def test_skip_route_twice(self) -> None:
        calls: list[str] = []
        app = App()
        app.get("/test", _recorder(calls, "a", Signal.SKIP_ROUTE), _recorder(calls, "a2"))
        app.get("/test", _recorder(calls, "b", Signal.SKIP_ROUTE))
        app.get("/test", _recorder(calls, "c", "from c"))
        assert (await _call(app, "/test")).text == "from c"
        assert calls == ["a", "b", "c"]

    async def test_skip_route_in_middleware_continues(self) -> None:
        app = App()
        app.use(lambda ctx: Signal.SKIP_ROUTE)
        app.get("/x", lambda ctx: "reached")
        assert (await _call(app, "/x")).text == "reached"

    async def test_skip_router_returns_to_parent(self) -> None:
        child = Router()
        child.use(lambda ctx: Signal.SKIP_ROUTER)
        child.get("/x", lambda ctx: "child")
        app = App()
        app.use("/admin", child)
        app.get("/admin/x", lambda ctx: "parent")
        assert (await _call(app, "/admin/x")).text == "parent"

    async def test_skip_router_from_route(self) -> None:
        child = Router()
        child.get("/x", lambda ctx: Signal.SKIP_ROUTER)
        child.get("/x", lambda ctx: "child second")
        app = App()
        app.use("/c", child)
        app.get("/c/x", lambda ctx: "parent")
        assert (await _call(app, "/c/x")).text == "parent"

    async def test_skip_router_at_root_is_not_found(self) -> None:
        app = App()
        app.use(lambda ctx: Signal.SKIP_ROUTER)
        app.get("/x", lambda ctx: "never")
        assert (await _call(app, "/x")).status == 404

    async def test_done_returns_none(self) -> None:
        app = App()
        app.get("/x", lambda ctx: Signal.DONE)
        app.get("/x", lambda ctx: "never")
        assert await _call(app, "/x") is None

    async def test_done_after_writing_through_asgi(self) -> None:
        app = App()

        @app.get("/raw")
        async def raw(ctx):
            send = ctx.state["asgi.send"]
            await send({"type": "http.response.start", "status": 202, "headers": []})
            await send({"type": "http.response.body", "body": b"raw"})
            return Signal.DONE

        async with TestClient(app) as client:
            response = await client.get("/raw")
        assert response.status == 202
        assert response.body == b"raw"


class TestMiddleware:
    async def test_runs_before_routes(self) -> None:
        calls: list[str] = []
        app = App()
        app.use(_recorder(calls, "mw"))
        app.get("/x", _recorder(calls, "route", "ok"))
        await _call(app, "/x")
        assert calls == ["mw", "route"]

    async def test_registration_order_across_layers(self) -> None:
        calls: list[str] = []
        app = App()
        app.get("/x", _recorder(calls, "route1"))
        app.use(_recorder(calls, "mw"))
        app.get("/x", _recorder(calls, "route2", "ok"))
        await _call(app, "/x")
        assert calls == ["route1", "mw", "route2"]

    async def test_prefix_filters(self) -> None:
        calls: list[str] = []
        app = App()
        app.use("/api", _recorder(calls, "api"))
        app.get("/api/x", lambda ctx: "ok")
        app.get("/apix", lambda ctx: "ok")
        await _call(app, "/apix")
        assert calls == []
        await _call(app, "/api/x")
        assert calls == ["api"]

    async def test_prefix_stripped_from_path(self) -> None:
        seen = []
        app = App()

        def record(ctx):
            seen.append((ctx.base_path, ctx.path, ctx.original_path))

        app.use("/static", record)
        await _call(app, "/static/css/site.css")
        assert seen == [("/static", "/css/site.css", "/static/css/site.css")]

    async def test_path_restored_for_later_layers(self) -> None:
        seen = []
        app = App()
        app.use("/static", lambda ctx: None)

        @app.get("/static/:file")
        def serve(ctx):
            seen.append((ctx.base_path, ctx.path))
            return "ok"

        await _call(app, "/static/a.css")
        assert seen == [("", "/static/a.css")]

    async def test_prefix_params(self) -> None:
        app = App()
        seen = []
        app.use("/users/:id", lambda ctx: seen.append(dict(ctx.params)))
        await _call(app, "/users/9/profile")
        assert seen == [{"id": "9"}]


class TestMounts:
    async def test_child_sees_stripped_path(self) -> None:
        api = Router()

        @api.get("/users/:id")
        def show(ctx):
            return f"{ctx.base_path}|{ctx.path}|{ctx.original_path}"

        app = App()
        app.use("/api", api)
        assert (await _call(app, "/api/users/7")).text == "/api|/users/7|/api/users/7"

    async def test_exact_prefix_becomes_root(self) -> None:
        api = Router()
        api.get("/", lambda ctx: f"root {ctx.path}")
        app = App()
        app.use("/api", api)
        assert (await _call(app, "/api")).text == "root /"

    async def test_nested_mounts(self) -> None:
        inner = Router()
        inner.get("/c", lambda ctx: f"{ctx.base_path} {ctx.path}")
        outer = Router()
        outer.use("/b", inner)
        app = App()
        app.use("/a", outer)
        assert (await _call(app, "/a/b/c")).text == "/a/b /c"

    async def test_mount_falls_through_to_parent(self) -> None:
        api = Router()
        api.get("/known", lambda ctx: "known")
        app = App()
        app.use("/api", api)
        app.get("/api/other", lambda ctx: "parent")
        assert (await _call(app, "/api/other")).text == "parent"

    async def test_child_case_sensitivity(self) -> None:
        child = Router(case_sensitive=True)
        child.get("/Item", lambda ctx: "item")
        app = App()
        app.use("/shop", child)
        assert (await _call(app, "/SHOP/Item")).text == "item"
        assert (await _call(app, "/shop/item")).status == 404


class TestErrors:
    async def test_raise_skips_to_error_handler(self) -> None:
        calls: list[str] = []

        def boom(ctx):
            raise ValueError("boom")

        def recover(err, ctx):
            return f"recovered: {err}"

        app = App()
        app.get("/x", boom, _recorder(calls, "skipped"), ErrorHandler(recover))
        response = await _call(app, "/x")
        assert response.text == "recovered: boom"
        assert calls == []

    async def test_fail_signal(self) -> None:
        app = App()
        app.get("/x", lambda ctx: Fail(HTTPError(403, "Forbidden")))
        response = await _call(app, "/x")
        assert response.status == 403
        assert response.text == "Forbidden"

    async def test_fail_with_non_exception_is_wrapped(self) -> None:
        seen = []
        app = App()
        app.get("/x", lambda ctx: Fail({"code": 7}))

        def inspect_error(err, ctx):
            seen.append(err)
            return ("handled", 500)

        app.use_error(inspect_error)
        response = await _call(app, "/x")
        assert response.status == 500
        assert isinstance(seen[0], HandlerError)
        assert seen[0].value == {"code": 7}

    async def test_routes_skipped_while_error_pending(self) -> None:
        calls: list[str] = []

        def boom(ctx):
            raise RuntimeError("mw failed")

        app = App()
        app.use(boom)
        app.get("/x", _recorder(calls, "route", "ok"))
        app.use(_recorder(calls, "normal mw"))
        response = await _call(app, "/x")
        assert response.status == 500
        assert calls == []

    async def test_error_handler_not_run_without_error(self) -> None:
        calls: list[str] = []
        app = App()
        app.use_error(lambda err, ctx: calls.append("error"))
        app.get("/x", lambda ctx: "ok")
        assert (await _call(app, "/x")).text == "ok"
        assert calls == []

    async def test_error_handler_clears_error(self) -> None:
        def boom(ctx):
            raise RuntimeError("transient")

        app = App()
        app.use(boom)
        app.use_error(lambda err, ctx: None)
        app.get("/x", lambda ctx: "after recovery")
        assert (await _call(app, "/x")).text == "after recovery"

    async def test_error_handler_replaces_error(self) -> None:
        def boom(ctx):
            raise RuntimeError("original")

        app = App()
        app.get("/x", boom)
        app.use_error(lambda err, ctx: Fail(HTTPError(418, "teapot")))
        response = await _call(app, "/x")
        assert response.status == 418
        assert response.text == "teapot"

    async def test_error_handler_raising_replaces_error(self) -> None:
        def boom(ctx):
            raise RuntimeError("original")

        def broken(err, ctx):
            raise KeyError("second")

        seen = []
        app = App()
        app.get("/x", boom)
        app.use_error(broken)
        app.use_error(lambda err, ctx: seen.append(type(err)) or Fail(err))
        await _call(app, "/x")
        assert seen == [KeyError]

    async def test_unhandled_error_is_500_with_message(self, caplog) -> None:
        def boom(ctx):
            raise ValueError("database unavailable")

        app = App()
        app.get("/x", boom)
        with caplog.at_level(logging.ERROR, logger="switchyard.server"):
            response = await _call(app, "/x")
        assert response.status == 500
        assert response.text == "database unavailable"
        assert any(record.exc_info for record in caplog.records)

    async def test_http_error_headers_kept(self) -> None:
        def login_required(ctx):
            raise HTTPError(401, "Login required", headers=(("WWW-Authenticate", "Basic"),))

        app = App()
        app.get("/x", login_required)
        response = await _call(app, "/x")
        assert response.status == 401
        assert response.header("WWW-Authenticate") == "Basic"

    async def test_error_in_mount_handled_by_parent(self) -> None:
        def boom(ctx):
            raise RuntimeError("child failed")

        child = Router()
        child.get("/x", boom)
        app = App()
        app.use("/c", child)
        app.use_error(lambda err, ctx: (f"parent caught {err}", 503))
        response = await _call(app, "/c/x")
        assert response.status == 503
        assert response.text == "parent caught child failed"

    async def test_undecodable_param_is_400(self) -> None:
        app = App()
        app.get("/users/:id", lambda ctx: "never")
        response = await _call(app, "/users/%FF")
        assert response.status == 400

    async def test_unconvertible_return_is_500(self) -> None:
        app = App()
        app.get("/x", lambda ctx: 42)
        response = await _call(app, "/x")
        assert response.status == 500
        assert "Cannot convert int" in response.text


class TestFallbacks:
    async def test_not_found_body(self) -> None:
        app = App()
        response = await _call(app, "/nope")
        assert response.status == 404
        assert response.text == "Cannot GET /nope"
        assert response.content_type.startswith("text/plain")

    async def test_method_mismatch_is_not_found(self) -> None:
        app = App()
        app.get("/users", lambda ctx: "list")
        response = await _call(app, "/users", method="POST")
        assert response.status == 404
        assert response.text == "Cannot POST /users"

    async def test_head_uses_get_handler(self) -> None:
        app = App()
        app.get("/x", lambda ctx: "hello")
        response = await _call(app, "/x", method="HEAD")
        assert response.status == 200
        assert response.text == "hello"

    async def test_head_runs_get_steps_after_all(self) -> None:
        calls: list[str] = []
        app = App()
        app.route("/r").all(_recorder(calls, "all")).get(lambda ctx: "get body")
        response = await _call(app, "/r", method="HEAD")
        assert response.status == 200
        assert response.text == "get body"
        assert calls == ["all"]

    async def test_head_body_dropped_over_asgi(self) -> None:
        app = App()
        app.get("/x", lambda ctx: "hello")
        async with TestClient(app) as client:
            response = await client.head("/x")
        assert response.status == 200
        assert response.body == b""

    async def test_automatic_options(self) -> None:
        app = App()
        app.get("/users", lambda ctx: "list")
        app.post("/users", lambda ctx: "create")
        response = await _call(app, "/users", method="OPTIONS")
        assert response.status == 200
        assert response.text == "GET, HEAD, POST"
        assert response.header("Allow") == "GET, HEAD, POST"

    async def test_explicit_options_wins(self) -> None:
        app = App()
        app.get("/users", lambda ctx: "list")
        app.options("/users", lambda ctx: ("custom", 204))
        response = await _call(app, "/users", method="OPTIONS")
        assert response.status == 204

    async def test_options_unknown_path(self) -> None:
        app = App()
        app.get("/users", lambda ctx: "list")
        assert (await _call(app, "/other", method="OPTIONS")).status == 404

    async def test_strict_routing_setting(self) -> None:
        app = App()
        app.enable("strict routing")
        app.get("/x", lambda ctx: "ok")
        assert (await _call(app, "/x/")).status == 404

    async def test_case_sensitive_setting(self) -> None:
        app = App()
        app.enable("case sensitive routing")
        app.get("/X", lambda ctx: "ok")
        assert (await _call(app, "/x")).status == 404
        assert (await _call(app, "/X")).status == 200


class TestReturnValues:
    async def test_dict_is_json(self) -> None:
        app = App()
        app.get("/x", lambda ctx: {"a": 1})
        response = await _call(app, "/x")
        assert response.content_type.startswith("application/json")
        assert response.text == '{"a": 1}'

    async def test_json_spaces(self) -> None:
        app = App()
        app.set("json spaces", 2)
        app.get("/x", lambda ctx: {"a": 1})
        assert (await _call(app, "/x")).text == '{\n  "a": 1\n}'

    async def test_status_tuple(self) -> None:
        app = App()
        app.post("/x", lambda ctx: ("created", 201))
        response = await _call(app, "/x", method="POST")
        assert response.status == 201
        assert response.text == "created"

    async def test_status_headers_tuple(self) -> None:
        app = App()
        app.post("/x", lambda ctx: ({"id": 1}, 201, {"Location": "/x/1"}))
        response = await _call(app, "/x", method="POST")
        assert response.status == 201
        assert response.header("Location") == "/x/1"

    async def test_redirect(self) -> None:
        app = App()
        app.get("/old", lambda ctx: Redirect("/new", status=301))
        response = await _call(app, "/old")
        assert response.status == 301
        assert response.header("Location") == "/new"

    async def test_bytes(self) -> None:
        app = App()
        app.get("/x", lambda ctx: b"\x00\x01")
        response = await _call(app, "/x")
        assert response.content_type == "application/octet-stream"


class TestDispatcher:
    def test_requires_compiled_router(self) -> None:
        with pytest.raises(RuntimeError, match="compiled"):
            Dispatcher(Router())

    async def test_direct_use(self) -> None:
        router = Router().get("/x", lambda ctx: "direct")
        router.compile()
        response = await Dispatcher(router).dispatch(Request.build("GET", "/x"))
        assert response.text == "direct"


class TestRepeatability:
    async def test_same_request_same_response(self) -> None:
        calls: list[str] = []
        orders = Router(merge_params=True)
        orders.use(_recorder(calls, "orders mw"))
        orders.get("/:orderId", lambda ctx: {"params": dict(ctx.params), "user": ctx.state["user"]})
        app = App()
        app.use(_recorder(calls, "root mw"))

        @app.param("userId")
        def load(ctx, value, name):
            ctx.state["user"] = f"user-{value}"

        app.use("/users/:userId/orders", orders)
        request = Request.build("GET", "/users/123/orders/456")

        first = await app.handle(request)
        second = await app.handle(request)
        assert first.status == second.status == 200
        assert first.body == second.body
        assert first.json_body() == {
            "params": {"userId": "123", "orderId": "456"},
            "user": "user-123",
        }
        assert calls == ["root mw", "orders mw", "root mw", "orders mw"]

    def test_same_match(self) -> None:
        router = Router()
        router.get("/users/:id", lambda ctx: None)
        router.compile()
        first = router.match("GET", "/users/7")
        second = router.match("GET", "/users/7")
        assert first == second
        assert first.params == {"id": "7"}
