"""Authenticate tool - Start the browser sign-in.

Flow:
1. If a usable token is cached, the tool confirms the signed-in user
   (``/me`` lookup) and returns immediately.
2. Otherwise it starts the local callback listener and returns the
   authorization URL with status ``pending``. The user opens the URL,
   signs in, and the listener stores the tokens; ``check_auth_status``
   then reports the new state.
"""

from __future__ import annotations

import logging
from typing import Any

from outlook_mcp.context import AppContext
from outlook_mcp.tools.base import build_success_response, error_response_from
from outlook_mcp.utils.errors import AuthenticationError, OutlookMCPError

logger = logging.getLogger(__name__)

USER_FIELDS = "displayName,mail,userPrincipalName"


async def authenticate(ctx: AppContext, force_new_auth: bool = False) -> dict[str, Any]:
    """Authenticate with Microsoft Graph.

    Args:
        ctx: Application context.
        force_new_auth: Start a new sign-in even if a valid token is cached.

    Returns:
        Already signed in: {status: success, data: {authenticated, user}, message}
        Sign-in started: {status: pending, auth_url, message}
        Error: {status: error, error, error_code}
    """
    try:
        session = ctx.session()

        if not force_new_auth and session.silent_acquire() is not None:
            try:
                profile = session.get_client().get("me", params={"$select": USER_FIELDS}) or {}
            except AuthenticationError as e:
                logger.warning("Cached credentials were rejected, starting a new sign-in: %s", e)
            else:
                user = {
                    "display_name": profile.get("displayName"),
                    "email": profile.get("mail") or profile.get("userPrincipalName"),
                }
                logger.info("Already authenticated as %s", user["email"])
                return build_success_response(
                    data={"authenticated": True, "user": user},
                    message=f"Already authenticated as {user['display_name']} ({user['email']})",
                )

        auth_url = session.get_auth_url()
        return {
            "status": "pending",
            "auth_url": auth_url,
            "message": (
                "Open the URL above in a browser and sign in. "
                "Then call check_auth_status to confirm."
            ),
        }

    except OutlookMCPError as e:
        logger.error("Authentication failed: %s", e)
        return error_response_from(e)
