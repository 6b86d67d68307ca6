"""Middleware module for Outlook MCP server."""

from outlook_mcp.middleware.rate_limiter import RateLimiter, Window

__all__ = [
    "RateLimiter",
    "Window",
]
