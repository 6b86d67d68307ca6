"""Logout tool - Clear cached credentials."""

from __future__ import annotations

import logging
from typing import Any

from outlook_mcp.context import AppContext
from outlook_mcp.tools.base import build_success_response, error_response_from
from outlook_mcp.utils.errors import OutlookMCPError

logger = logging.getLogger(__name__)


async def logout(ctx: AppContext) -> dict[str, Any]:
    """Sign out by removing the cached tokens.

    Tokens are only deleted locally; the user will need to call
    authenticate again before using other tools.

    Returns:
        Success response with ``logged_out`` True if anything was removed.
    """
    try:
        removed = ctx.session().sign_out()
    except OutlookMCPError as e:
        logger.warning("Error during logout: %s", e)
        return error_response_from(e)

    if removed:
        logger.info("User logged out successfully")
        return build_success_response(
            data={"logged_out": True},
            message="Successfully logged out. You will need to re-authenticate.",
        )

    logger.debug("Logout called but no credentials were stored")
    return build_success_response(
        data={"logged_out": False},
        message="No credentials were stored. Already logged out.",
    )
