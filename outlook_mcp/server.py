"""FastMCP server for Outlook MCP.

This module builds the FastMCP server and registers the authentication
tools against an explicit :class:`AppContext`:

- authenticate: start (or confirm) the browser sign-in
- check_auth_status: report authentication state
- logout: clear cached credentials

The lifespan context manager drops stale rate limiter windows at startup and
releases the OAuth callback listener at shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from outlook_mcp.context import AppContext
from outlook_mcp.tools import authenticate, check_auth_status, logout

logger = logging.getLogger(__name__)

SERVER_NAME = "outlook-mcp-server"


# =============================================================================
# Lifespan Context Manager
# =============================================================================


def make_lifespan(
    ctx: AppContext,
) -> Callable[[FastMCP], Any]:
    """Build the lifespan context manager bound to ``ctx``."""

    @asynccontextmanager
    async def server_lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        logger.info("Outlook MCP server starting up...")

        stale_count = ctx.rate_limiter.cleanup_stale()
        if stale_count > 0:
            logger.info("Cleaned up %d stale rate limiter windows", stale_count)

        logger.info("Outlook MCP server ready")
        try:
            yield {}
        finally:
            logger.info("Outlook MCP server shutting down...")
            ctx.close()

    return server_lifespan


# =============================================================================
# Auth Tool Wrappers
# =============================================================================


def _register_auth_tools(mcp: FastMCP, ctx: AppContext) -> None:
    """Register the authentication tools with the FastMCP server.

    Args:
        mcp: The FastMCP server instance.
        ctx: Context handed to every tool call.
    """

    @mcp.tool(
        name="authenticate",
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
        ),
    )
    async def authenticate_tool(force_new_auth: bool = False) -> dict[str, Any]:
        """Authenticate with Microsoft Graph API.

        Use this tool only when check_auth_status indicates authentication is
        needed. Tokens are cached, so this doesn't need to be called every time.

        Args:
            force_new_auth: Start a new sign-in even if valid tokens exist.

        Returns:
            Already signed in: {status, data: {authenticated, user}, message}
            Sign-in started: {status: "pending", auth_url, message}
        """
        return await authenticate(ctx, force_new_auth=force_new_auth)

    @mcp.tool(
        name="check_auth_status",
        annotations=ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
        ),
    )
    async def check_auth_status_tool() -> dict[str, Any]:
        """Check authentication status.

        Use this tool first to determine whether authentication is needed or
        cached credentials can be used.
        """
        return await check_auth_status(ctx)

    @mcp.tool(
        name="logout",
        annotations=ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
        ),
    )
    async def logout_tool() -> dict[str, Any]:
        """Sign out by clearing cached credentials.

        The user will need to call authenticate again to use other tools.
        """
        return await logout(ctx)


def create_server(ctx: AppContext) -> FastMCP:
    """Create and configure the FastMCP server instance.

    Args:
        ctx: Application context shared by all tools.

    Returns:
        Configured FastMCP server instance.
    """
    server = FastMCP(
        name=SERVER_NAME,
        lifespan=make_lifespan(ctx),
    )
    _register_auth_tools(server, ctx)

    logger.info("Outlook MCP server created with 3 tools registered")
    return server


__all__ = [
    "SERVER_NAME",
    "create_server",
    "make_lifespan",
]
