"""Tests for the local OAuth redirect listener."""

from __future__ import annotations

import socket
from unittest.mock import MagicMock

import pytest
import requests

from outlook_mcp.auth.callback import (
    CallbackOutcome,
    CallbackResult,
    CallbackServer,
    render_page,
)
from outlook_mcp.utils.errors import ListenerError


@pytest.fixture
def redirect_uri(unused_port: int) -> str:
    return f"http://127.0.0.1:{unused_port}/auth/callback"


@pytest.fixture
def on_callback() -> MagicMock:
    return MagicMock(return_value=CallbackOutcome(success=True, message="All done"))


@pytest.fixture
def server(redirect_uri: str, on_callback: MagicMock):
    listener = CallbackServer(redirect_uri, on_callback)
    yield listener
    listener.stop()


class TestCallbackResult:
    """Tests for query parsing."""

    def test_parses_code_and_state(self) -> None:
        result = CallbackResult.from_query("code=abc&state=xyz")
        assert result == CallbackResult(code="abc", state="xyz")

    def test_parses_error(self) -> None:
        result = CallbackResult.from_query(
            "error=access_denied&error_description=User+cancelled"
        )
        assert result.error == "access_denied"
        assert result.error_description == "User cancelled"
        assert result.code is None


class TestRenderPage:
    """Tests for the browser status page."""

    def test_success_page(self) -> None:
        page = render_page(CallbackOutcome(success=True, message="Welcome")).decode()
        assert "Authentication Successful" in page
        assert "Welcome" in page

    def test_failure_page_escapes_message(self) -> None:
        page = render_page(CallbackOutcome(success=False, message="<script>x</script>")).decode()
        assert "Authentication Failed" in page
        assert "<script>" not in page


class TestCallbackServer:
    """Tests for the listener lifecycle and routing."""

    def test_parses_redirect_uri(self, server: CallbackServer, redirect_uri: str) -> None:
        assert server.host == "127.0.0.1"
        assert server.path == "/auth/callback"
        assert redirect_uri.endswith(f":{server.port}/auth/callback")
        assert not server.is_running

    def test_callback_is_delivered(
        self, server: CallbackServer, redirect_uri: str, on_callback: MagicMock
    ) -> None:
        server.start()

        response = requests.get(redirect_uri, params={"code": "abc", "state": "xyz"}, timeout=5)

        assert response.status_code == 200
        assert "Authentication Successful" in response.text
        on_callback.assert_called_once_with(CallbackResult(code="abc", state="xyz"))

    def test_unknown_path_returns_404(
        self, server: CallbackServer, on_callback: MagicMock
    ) -> None:
        server.start()

        response = requests.get(f"http://127.0.0.1:{server.port}/favicon.ico", timeout=5)

        assert response.status_code == 404
        on_callback.assert_not_called()

    def test_handler_exception_renders_failure_page(
        self, server: CallbackServer, redirect_uri: str, on_callback: MagicMock
    ) -> None:
        on_callback.side_effect = RuntimeError("boom")
        server.start()

        response = requests.get(redirect_uri, params={"code": "abc"}, timeout=5)

        assert response.status_code == 200
        assert "Authentication Failed" in response.text

    def test_start_is_idempotent(self, server: CallbackServer) -> None:
        server.start()
        server.start()
        assert server.is_running
        assert server.bound_port == server.port

    def test_stop_releases_port(self, server: CallbackServer) -> None:
        server.start()

        assert server.stop() is True
        assert server.stop() is False
        assert not server.is_running
        assert server.bound_port is None

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", server.port))

    def test_can_restart_after_stop(self, server: CallbackServer, redirect_uri: str) -> None:
        server.start()
        server.stop()
        server.start()

        response = requests.get(redirect_uri, params={"code": "abc"}, timeout=5)
        assert response.status_code == 200

    def test_port_in_use_raises_listener_error(self, server: CallbackServer) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", server.port))
            blocker.listen(1)

            with pytest.raises(ListenerError) as exc_info:
                server.start()

        assert "hint" in exc_info.value.details
        assert not server.is_running
