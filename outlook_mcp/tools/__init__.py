"""Outlook MCP tools package.

Each tool takes the application context explicitly and answers with the
standard response envelope from :mod:`outlook_mcp.tools.base`.
"""

from outlook_mcp.tools.auth import authenticate, check_auth_status, logout
from outlook_mcp.tools.base import (
    build_error_response,
    build_success_response,
    error_response_from,
)

__all__ = [
    # Auth tools
    "authenticate",
    "check_auth_status",
    "logout",
    # Response builders
    "build_success_response",
    "build_error_response",
    "error_response_from",
]
