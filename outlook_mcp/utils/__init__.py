"""Shared utilities for Outlook MCP Server.

This module provides the exception hierarchy and the at-rest encryption
helpers used by the token store.
"""

from outlook_mcp.utils.encryption import is_sealed, key_from_hex, seal, unseal
from outlook_mcp.utils.errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    ListenerError,
    NetworkError,
    OutlookMCPError,
    RateLimitExceeded,
    ThrottlingError,
    TokenError,
    TokenExchangeError,
)

__all__ = [
    # Encryption utilities
    "key_from_hex",
    "seal",
    "unseal",
    "is_sealed",
    # Exception hierarchy
    "ErrorKind",
    "OutlookMCPError",
    "ConfigurationError",
    "AuthenticationError",
    "TokenExchangeError",
    "ListenerError",
    "TokenError",
    "RateLimitExceeded",
    "ThrottlingError",
    "ApiError",
    "NetworkError",
]
