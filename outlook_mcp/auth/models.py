"""Pydantic models for cached OAuth tokens.

A :class:`TokenRecord` is what the token store persists per identity. Its
absolute expiry is computed once, when the token endpoint response is
received, so readers never need to know when the token was issued.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import jwt
from pydantic import BaseModel, Field

from outlook_mcp.utils.errors import TokenExchangeError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600

# Refresh this long before the provider-declared expiry.
DEFAULT_EXPIRY_BUFFER_SECONDS = 300

# ID-token claims that can name an identity, in order of preference.
IDENTITY_CLAIMS = ("preferred_username", "email", "upn", "oid", "sub")


class SessionState(str, Enum):
    """Lifecycle state of an OAuth session.

    Attributes:
        UNINITIALIZED: ``initialize()`` has not run yet.
        INITIALIZED: Ready, but no usable token is cached.
        AUTHENTICATING: An interactive browser flow is in progress.
        AUTHENTICATED: A token was acquired or refreshed.
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class TokenRecord(BaseModel):
    """Token set cached for one identity.

    Attributes:
        access_token: Opaque bearer token; a record without one is invalid.
        refresh_token: Long-lived token used for silent renewal; may rotate.
        id_token: OpenID Connect ID token, when the provider returned one.
        expires_at: Absolute (UTC) expiry of ``access_token``.
        scope: Space-delimited scopes actually granted.
        token_type: Normally ``Bearer``.
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    id_token: str | None = None
    expires_at: datetime
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        previous: TokenRecord | None = None,
        now: datetime | None = None,
    ) -> TokenRecord:
        """Build a record from a token endpoint JSON response.

        Args:
            payload: Decoded token endpoint response.
            previous: Record being refreshed. Its refresh token (and ID token)
                are carried forward when the provider omits new ones.
            now: Reference time for the expiry; defaults to the current time.

        Raises:
            TokenExchangeError: If the response has no access token.
        """
        access_token = payload.get("access_token")
        if not access_token:
            raise TokenExchangeError(
                "Token endpoint response did not contain an access token",
                details={"fields": sorted(payload)},
            )

        if now is None:
            now = datetime.now(UTC)
        try:
            raw_expires_in = payload.get("expires_in")
            expires_in = int(
                DEFAULT_EXPIRES_IN if raw_expires_in is None else raw_expires_in
            )
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring invalid expires_in %r, using %ds",
                payload.get("expires_in"),
                DEFAULT_EXPIRES_IN,
            )
            expires_in = DEFAULT_EXPIRES_IN

        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token")
            or (previous.refresh_token if previous else None),
            id_token=payload.get("id_token") or (previous.id_token if previous else None),
            expires_at=now + timedelta(seconds=expires_in),
            scope=payload.get("scope") or (previous.scope if previous else ""),
            token_type=payload.get("token_type") or "Bearer",
        )

    def is_stale(
        self,
        buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        now: datetime | None = None,
    ) -> bool:
        """True if the access token expired or expires within ``buffer_seconds``."""
        if now is None:
            now = datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now >= expires_at - timedelta(seconds=buffer_seconds)

    def claims(self) -> dict[str, Any]:
        """Decode the ID token payload without verifying its signature.

        The token came straight from the token endpoint over TLS, so its
        claims are only used to name the cache entry. Returns an empty dict
        when there is no ID token or it cannot be decoded.
        """
        if not self.id_token:
            return {}
        try:
            claims: dict[str, Any] = jwt.decode(
                self.id_token, options={"verify_signature": False}
            )
            return claims
        except jwt.PyJWTError as e:
            logger.warning("Could not decode ID token claims: %s", e)
            return {}

    def identity(self) -> str | None:
        """Identity string derived from the ID token, if any."""
        claims = self.claims()
        for claim in IDENTITY_CLAIMS:
            value = claims.get(claim)
            if isinstance(value, str) and value:
                return value
        return None


__all__ = [
    "SessionState",
    "TokenRecord",
    "DEFAULT_EXPIRES_IN",
    "DEFAULT_EXPIRY_BUFFER_SECONDS",
]
