"""Runtime configuration for Outlook MCP Server.

Settings are read from environment variables (a ``.env`` file is loaded by the
entry point) and validated once, at construction time. A missing client id or a
malformed redirect URI fails here rather than on the first API call.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

from outlook_mcp.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY = "https://login.microsoftonline.com/common"
DEFAULT_REDIRECT_URI = "http://localhost:3000/auth/callback"
DEFAULT_API_BASE_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_SCOPES = [
    "openid",
    "profile",
    "offline_access",
    "User.Read",
    "Mail.Read",
    "Mail.ReadWrite",
    "Mail.Send",
    "MailboxSettings.Read",
    "Calendars.ReadWrite",
    "Contacts.Read",
]


def default_token_cache_path() -> Path:
    """Default location of the token cache file (~/.outlook-mcp/tokens.json)."""
    return Path.home() / ".outlook-mcp" / "tokens.json"


class Settings(BaseModel):
    """Validated configuration for the auth core and the API client.

    Attributes:
        client_id: Application (client) id registered with the provider.
        client_secret: Optional secret; when set the token exchange uses the
            confidential-client form.
        authority: Identity provider base URL (tenant included).
        redirect_uri: Loopback URI the local callback listener binds to.
        scopes: Scopes requested on authorization and refresh.
        api_base_url: Base URL prepended to every resource endpoint.
        rate_limit_window_seconds: Fixed rate-limit window width.
        rate_limit_max_requests: Requests allowed per window and identity.
        token_cache_path: JSON file holding every cached token record.
        token_encryption_key: Optional 64-char hex key sealing records at rest.
        auth_timeout_seconds: How long an interactive flow waits for the redirect.
        http_timeout_seconds: Per-request timeout passed to requests.
    """

    client_id: str = Field(..., min_length=1)
    client_secret: str | None = None
    authority: str = DEFAULT_AUTHORITY
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    api_base_url: str = DEFAULT_API_BASE_URL
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_max_requests: int = Field(default=30, ge=1)
    token_cache_path: Path = Field(default_factory=default_token_cache_path)
    token_encryption_key: str | None = None
    auth_timeout_seconds: float = Field(default=300.0, gt=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("client_id")
    @classmethod
    def _strip_client_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("client_id must not be blank")
        return value

    @field_validator("authority", "api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("redirect_uri")
    @classmethod
    def _check_redirect_uri(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("redirect_uri must be an absolute http(s) URL")
        return value

    @field_validator("scopes")
    @classmethod
    def _check_scopes(cls, value: list[str]) -> list[str]:
        scopes = [s.strip() for s in value if s.strip()]
        if not scopes:
            raise ValueError("at least one scope is required")
        return scopes

    @field_validator("token_cache_path")
    @classmethod
    def _expand_cache_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("token_encryption_key")
    @classmethod
    def _check_encryption_key(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        value = value.strip()
        if len(value) != 64:
            raise ValueError("token_encryption_key must be 64 hex characters")
        bytes.fromhex(value)
        return value

    @property
    def authorize_url(self) -> str:
        return f"{self.authority}/oauth2/v2.0/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    @property
    def is_confidential(self) -> bool:
        """True when a client secret is configured."""
        return bool(self.client_secret)

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)

    @classmethod
    def build(cls, **values: object) -> Settings:
        """Construct settings, converting validation failures to ConfigurationError."""
        try:
            return cls(**values)  # type: ignore[arg-type]
        except ValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise ConfigurationError(
                f"Invalid configuration: {', '.join(fields)}",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables.

        Raises:
            ConfigurationError: If MS_CLIENT_ID is missing or any value is invalid.
        """
        client_id = os.getenv("MS_CLIENT_ID", "")
        if not client_id.strip():
            raise ConfigurationError(
                "Client ID is required",
                details={"hint": "Set MS_CLIENT_ID in your environment or .env file"},
            )

        values: dict[str, object] = {"client_id": client_id}

        optional = {
            "MS_CLIENT_SECRET": "client_secret",
            "MS_AUTHORITY": "authority",
            "MS_REDIRECT_URI": "redirect_uri",
            "MS_API_BASE_URL": "api_base_url",
            "TOKEN_STORAGE_PATH": "token_cache_path",
            "TOKEN_ENCRYPTION_KEY": "token_encryption_key",
            "OAUTH_TIMEOUT_SECONDS": "auth_timeout_seconds",
            "HTTP_TIMEOUT_SECONDS": "http_timeout_seconds",
            "RATE_LIMIT_MAX_REQUESTS": "rate_limit_max_requests",
        }
        for env_var, field in optional.items():
            raw = os.getenv(env_var)
            if raw:
                values[field] = raw

        scopes = os.getenv("MS_SCOPES")
        if scopes:
            values["scopes"] = scopes.split(",")

        window_ms = os.getenv("RATE_LIMIT_WINDOW_MS")
        if window_ms:
            try:
                values["rate_limit_window_seconds"] = int(window_ms) / 1000
            except ValueError as e:
                raise ConfigurationError(
                    "RATE_LIMIT_WINDOW_MS must be an integer number of milliseconds"
                ) from e

        settings = cls.build(**values)
        logger.debug(
            "Loaded settings for client %s... (authority=%s, confidential=%s)",
            settings.client_id[:8],
            settings.authority,
            settings.is_confidential,
        )
        return settings


__all__ = [
    "Settings",
    "DEFAULT_AUTHORITY",
    "DEFAULT_REDIRECT_URI",
    "DEFAULT_API_BASE_URL",
    "DEFAULT_SCOPES",
    "default_token_cache_path",
]
