"""Tests for the Outlook MCP server integration.

Tests cover:
- Server creation and FastMCP instance
- Tool registration and annotations
- Server lifespan startup and shutdown
- Main entry point configuration handling
"""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest
from pytest_mock import MockerFixture

from outlook_mcp.config import Settings
from outlook_mcp.context import AppContext, build_context
from outlook_mcp.server import SERVER_NAME, create_server, make_lifespan


@pytest.fixture
def ctx(settings: Settings) -> Iterator[AppContext]:
    context = build_context(settings, open_browser=lambda url: True)
    yield context
    context.close()


class TestServerCreation:
    """Tests for server creation and tool registration."""

    def test_create_server_returns_fastmcp_instance(self, ctx: AppContext) -> None:
        server = create_server(ctx)
        assert server.name == SERVER_NAME == "outlook-mcp-server"

    def test_auth_tools_registered(self, ctx: AppContext) -> None:
        server = create_server(ctx)
        names = {tool.name for tool in server._tool_manager.list_tools()}
        assert names == {"authenticate", "check_auth_status", "logout"}

    def test_tool_annotations(self, ctx: AppContext) -> None:
        server = create_server(ctx)
        tools = {tool.name: tool for tool in server._tool_manager.list_tools()}

        assert tools["check_auth_status"].annotations.readOnlyHint is True
        assert tools["logout"].annotations.destructiveHint is True
        assert tools["logout"].annotations.idempotentHint is True
        assert tools["authenticate"].annotations.readOnlyHint is False


class TestServerLifespan:
    """Tests for the lifespan context manager."""

    @pytest.mark.asyncio
    async def test_lifespan_cleans_up_on_shutdown(
        self, ctx: AppContext, mocker: MockerFixture
    ) -> None:
        cleanup_stale = mocker.spy(ctx.rate_limiter, "cleanup_stale")
        close = mocker.patch.object(ctx, "close")
        server = create_server(ctx)

        async with make_lifespan(ctx)(server) as state:
            assert state == {}
            cleanup_stale.assert_called_once()
            close.assert_not_called()

        close.assert_called_once()

    @pytest.mark.asyncio
    async def test_lifespan_releases_listener(self, ctx: AppContext) -> None:
        server = create_server(ctx)

        async with make_lifespan(ctx)(server):
            ctx.session().get_auth_url()
            assert ctx.session().listener_running

        assert not ctx.session().listener_running


class TestMain:
    """Tests for the main entry point."""

    def test_main_exits_without_client_id(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MS_CLIENT_ID", raising=False)

        with (
            patch("outlook_mcp.__main__.load_dotenv"),
            pytest.raises(SystemExit) as exc_info,
        ):
            from outlook_mcp.__main__ import main

            main()

        assert exc_info.value.code == 1

    def test_main_runs_stdio_by_default(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path
    ) -> None:
        monkeypatch.setenv("MS_CLIENT_ID", "abc")
        monkeypatch.setenv("TOKEN_STORAGE_PATH", str(tmp_path / "tokens.json"))
        monkeypatch.delenv("TRANSPORT", raising=False)
        server = MagicMock()

        with (
            patch("outlook_mcp.__main__.load_dotenv"),
            patch("outlook_mcp.server.create_server", return_value=server),
        ):
            from outlook_mcp.__main__ import main

            main()

        server.run.assert_called_once_with(transport="stdio")
