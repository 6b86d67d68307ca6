"""Outlook MCP authentication tools package.

This package contains MCP tool implementations for OAuth authentication:

- authenticate: Start the browser sign-in (or confirm an existing one)
- check_auth_status: Report authentication state without side effects
- logout: Clear cached credentials
"""

from outlook_mcp.tools.auth.login import authenticate
from outlook_mcp.tools.auth.logout import logout
from outlook_mcp.tools.auth.status import check_auth_status

__all__ = [
    "authenticate",
    "check_auth_status",
    "logout",
]
