"""Auth status tool - Check authentication state.

Reports whether a usable token is available, renewing a stale one through
the refresh token if needed, and whether the granted scopes cover the
configured ones. Never opens a browser.
"""

from __future__ import annotations

import logging
from typing import Any

from outlook_mcp.context import AppContext
from outlook_mcp.tools.base import build_success_response, error_response_from
from outlook_mcp.utils.errors import OutlookMCPError

logger = logging.getLogger(__name__)

# Sign-in scopes the token endpoint never lists among the granted ones.
OIDC_SCOPES = frozenset({"openid", "profile", "email", "offline_access"})


def _scope_name(scope: str) -> str:
    # "https://graph.microsoft.com/Mail.Read" -> "mail.read"
    return scope.rsplit("/", 1)[-1].lower()


def missing_scopes(granted: str, expected: list[str]) -> list[str]:
    """Return the expected resource scopes absent from the granted set.

    Comparison ignores case, order and any resource URL prefix. An empty
    ``granted`` string means the provider did not report scopes, so
    nothing is reported missing.
    """
    if not granted.strip():
        return []
    granted_names = {_scope_name(s) for s in granted.split()}
    return [
        scope
        for scope in expected
        if scope.lower() not in OIDC_SCOPES and _scope_name(scope) not in granted_names
    ]


async def check_auth_status(ctx: AppContext) -> dict[str, Any]:
    """Check if the user is authenticated with Microsoft Graph.

    Returns:
        Success response with:
        - authenticated: True/False
        - auth_needed: True when the authenticate tool should be called
        - auth_in_progress: True while a sign-in is pending
        - user_id: Cached identity, if any
        - token_expires_at: Access token expiry (ISO 8601), if authenticated
        - token_scopes: Scopes granted to the token, if authenticated
        - missing_scopes: Configured scopes the token lacks
        - scope_mismatch: True if any configured scope is missing
        - rate_limit: Local request quota usage for the identity
    """
    try:
        session = ctx.session()
        record = session.silent_acquire()
    except OutlookMCPError as e:
        logger.error("Error checking auth status: %s", e)
        return error_response_from(e)

    user_id = session.user_id
    data: dict[str, Any] = {
        "authenticated": record is not None,
        "auth_needed": record is None,
        "auth_in_progress": session.auth_in_progress,
        "state": session.state.value,
        "user_id": user_id,
        "rate_limit": ctx.rate_limiter.usage(user_id or "default"),
    }

    if record is None:
        return build_success_response(
            data=data,
            message="Authentication required. Use the authenticate tool to sign in.",
        )

    missing = missing_scopes(record.scope, ctx.settings.scopes)
    data["token_expires_at"] = record.expires_at.isoformat()
    data["token_scopes"] = record.scope.split()
    data["missing_scopes"] = missing
    data["scope_mismatch"] = bool(missing)

    message = f"Authenticated as {user_id}"
    if missing:
        logger.warning("Token for %s lacks scopes: %s", user_id, ", ".join(missing))
        message += (
            ". WARNING: Token is missing scopes " + ", ".join(missing)
            + ". Run authenticate with force_new_auth to grant them."
        )
    return build_success_response(data=data, message=message)
