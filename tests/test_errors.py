"""Tests for switchyard.errors — exception hierarchy and error messages."""

import pytest

from switchyard.errors import (
    ConfigurationError,
    HandlerError,
    HTTPError,
    NotFound,
    SwitchyardError,
)
from switchyard.routing.router import Router


class TestHierarchy:
    def test_http_error_is_switchyard_error(self) -> None:
        assert issubclass(HTTPError, SwitchyardError)

    def test_not_found_is_http_error(self) -> None:
        assert issubclass(NotFound, HTTPError)

    def test_configuration_error_is_switchyard_error(self) -> None:
        assert issubclass(ConfigurationError, SwitchyardError)

    def test_handler_error_is_switchyard_error(self) -> None:
        assert issubclass(HandlerError, SwitchyardError)


class TestHTTPError:
    def test_status_and_detail(self) -> None:
        err = HTTPError(status=400, detail="Bad request body")
        assert err.status == 400
        assert err.detail == "Bad request body"

    def test_str_with_detail(self) -> None:
        assert str(HTTPError(status=400, detail="Bad request body")) == "400: Bad request body"

    def test_str_without_detail(self) -> None:
        assert str(HTTPError(status=500)) == "500"

    def test_headers(self) -> None:
        err = HTTPError(401, headers=(("WWW-Authenticate", "Bearer"),))
        assert err.headers == (("WWW-Authenticate", "Bearer"),)

    def test_raisable(self) -> None:
        with pytest.raises(HTTPError) as exc_info:
            raise HTTPError(418, "teapot")
        assert exc_info.value.status == 418


class TestNotFound:
    def test_defaults(self) -> None:
        err = NotFound()
        assert err.status == 404
        assert err.detail == "Not Found"

    def test_custom_detail(self) -> None:
        assert NotFound("No such user").detail == "No such user"


class TestHandlerError:
    def test_keeps_value(self) -> None:
        err = HandlerError({"code": 3})
        assert err.value == {"code": 3}
        assert str(err) == "{'code': 3}"


class TestConfigurationMessages:
    def test_bad_pattern_names_position(self) -> None:
        with pytest.raises(ConfigurationError, match="Unexpected '\\(' at index 10"):
            Router().get("/users/:id(", lambda ctx: None)

    def test_missing_handler(self) -> None:
        with pytest.raises(ConfigurationError, match="needs at least one handler"):
            Router().add_route("GET", "/x")
