"""Authentication module for Outlook MCP server.

This module provides OAuth 2.0 authorization-code sign-in for the
Microsoft identity platform, including:

- A per-identity token cache on disk (optionally AES-256-GCM sealed)
- Silent token refresh with a five-minute expiry buffer
- An interactive browser flow with a transient localhost callback listener

Usage:
    >>> from outlook_mcp.auth import OAuthSession, TokenStore
    >>>
    >>> store = TokenStore(settings.token_cache_path)
    >>> session = OAuthSession(settings, store).initialize()
    >>>
    >>> # Cached token, silent refresh, or browser sign-in, in that order
    >>> token = session.get_access_token()
"""

from outlook_mcp.auth.callback import CallbackOutcome, CallbackResult, CallbackServer
from outlook_mcp.auth.models import SessionState, TokenRecord
from outlook_mcp.auth.oauth import DEFAULT_IDENTITY, OAuthSession, generate_pkce
from outlook_mcp.auth.storage import TokenStore

__all__ = [
    # Session
    "OAuthSession",
    "SessionState",
    "DEFAULT_IDENTITY",
    "generate_pkce",
    # Tokens
    "TokenRecord",
    "TokenStore",
    # Callback listener
    "CallbackServer",
    "CallbackResult",
    "CallbackOutcome",
]
