"""Custom exception hierarchy for Outlook MCP Server.

Every error carries a ``kind`` tag from :class:`ErrorKind` so that callers
(tool handlers in particular) can classify failures without inspecting the
exception class name. Variants that need associated data (retry delays,
HTTP status, provider error codes) take them as explicit constructor
arguments.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Tag identifying the category of an :class:`OutlookMCPError`."""

    INTERNAL = "InternalError"
    CONFIGURATION = "ConfigurationError"
    AUTHENTICATION = "AuthenticationError"
    TOKEN_EXCHANGE = "TokenExchangeError"
    LISTENER = "ListenerError"
    TOKEN_STORE = "TokenError"
    RATE_LIMIT = "RateLimitExceeded"
    THROTTLED = "ThrottlingError"
    API = "ApiError"
    NETWORK = "NetworkError"


class OutlookMCPError(Exception):
    """Base exception for all Outlook MCP Server errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(OutlookMCPError):
    """Raised at construction time when required settings are missing or invalid."""

    kind = ErrorKind.CONFIGURATION


class AuthenticationError(OutlookMCPError):
    """No valid access token could be obtained by any path.

    The user has to re-run the interactive authenticate step.
    """

    kind = ErrorKind.AUTHENTICATION


class TokenExchangeError(AuthenticationError):
    """The provider rejected an authorization code or refresh token.

    Attributes:
        status_code: HTTP status returned by the token endpoint, if any.
        error_code: OAuth ``error`` value from the response body, if any.
    """

    kind = ErrorKind.TOKEN_EXCHANGE

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code


class ListenerError(AuthenticationError):
    """The local redirect listener failed.

    Raised when the callback port cannot be bound, the interactive flow
    times out, or the browser redirect carries an error or malformed
    parameters.
    """

    kind = ErrorKind.LISTENER


class TokenError(OutlookMCPError):
    """The token store could not be read or written."""

    kind = ErrorKind.TOKEN_STORE


class RateLimitExceeded(OutlookMCPError):
    """The local request quota for the current window is used up.

    Attributes:
        retry_after_seconds: Whole seconds until the window expires.
    """

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        retry_after_seconds: int,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retry_after_seconds = retry_after_seconds


class ThrottlingError(OutlookMCPError):
    """The remote API answered 429 Too Many Requests.

    Attributes:
        retry_after_seconds: Delay requested by the provider's Retry-After.
    """

    kind = ErrorKind.THROTTLED

    def __init__(
        self,
        message: str,
        retry_after_seconds: int = 30,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.retry_after_seconds = retry_after_seconds


class ApiError(OutlookMCPError):
    """A remote 4xx/5xx response other than 401 and 429.

    Attributes:
        status_code: HTTP status code from the API response.
        error_code: Provider-specific error code, if available.
        payload: Raw decoded response body.
    """

    kind = ErrorKind.API

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: str | None = None,
        payload: Any = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.error_code = error_code
        self.payload = payload


class NetworkError(OutlookMCPError):
    """The request never reached the server or no response was received."""

    kind = ErrorKind.NETWORK


__all__ = [
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
