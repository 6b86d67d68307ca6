"""Base utilities for Outlook MCP tools.

This module provides the standardized response builders shared by all
tools, so every tool answers with the same envelope.
"""

from __future__ import annotations

from typing import Any

from outlook_mcp.utils.errors import OutlookMCPError, RateLimitExceeded, ThrottlingError

# =============================================================================
# Standard Response Keys
# =============================================================================


class ResponseKeys:
    """Standard keys for tool responses."""

    STATUS = "status"
    DATA = "data"
    MESSAGE = "message"
    ERROR = "error"
    ERROR_CODE = "error_code"


# =============================================================================
# Response Builders
# =============================================================================


def build_success_response(
    data: Any,
    message: str | None = None,
) -> dict[str, Any]:
    """Build standardized success response.

    Args:
        data: Tool-specific payload.
        message: Optional human-readable message.

    Returns:
        Standardized success response dict.
    """
    response: dict[str, Any] = {
        ResponseKeys.STATUS: "success",
        ResponseKeys.DATA: data,
    }
    if message:
        response[ResponseKeys.MESSAGE] = message
    return response


def build_error_response(
    error: str,
    error_code: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build standardized error response.

    Args:
        error: Human-readable error message.
        error_code: Optional error code for programmatic handling.
        details: Optional additional error details.

    Returns:
        Standardized error response dict.
    """
    response: dict[str, Any] = {
        ResponseKeys.STATUS: "error",
        ResponseKeys.ERROR: error,
    }
    if error_code:
        response[ResponseKeys.ERROR_CODE] = error_code
    if details:
        response.update(details)
    return response


def error_response_from(exc: OutlookMCPError) -> dict[str, Any]:
    """Build an error response from one of our exceptions, keyed by its kind."""
    details: dict[str, Any] = dict(exc.details)
    if isinstance(exc, (RateLimitExceeded, ThrottlingError)):
        details["retry_after_seconds"] = exc.retry_after_seconds
    return build_error_response(
        error=exc.message,
        error_code=exc.kind.value,
        details=details,
    )


__all__ = [
    "ResponseKeys",
    "build_success_response",
    "build_error_response",
    "error_response_from",
]
