"""Pytest configuration and fixtures for Outlook MCP server tests."""

from __future__ import annotations

import json
import socket
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import jwt
import pytest
import requests

from outlook_mcp.auth.models import TokenRecord
from outlook_mcp.auth.storage import TokenStore
from outlook_mcp.config import Settings

TEST_SIGNING_KEY = "test-signing-key-not-a-secret-0123456789"


def free_port() -> int:
    """Ask the OS for a currently unused localhost port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def unused_port() -> int:
    return free_port()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with a private cache file and a free callback port."""
    return Settings(
        client_id="test-client-id",
        redirect_uri=f"http://127.0.0.1:{free_port()}/auth/callback",
        scopes=["openid", "offline_access", "User.Read"],
        api_base_url="https://graph.example.test/v1.0",
        token_cache_path=tmp_path / "tokens.json",
        auth_timeout_seconds=5,
    )


@pytest.fixture
def token_store(settings: Settings) -> TokenStore:
    return TokenStore(settings.token_cache_path)


@pytest.fixture
def make_id_token() -> Callable[..., str]:
    """Factory for HS256-signed ID tokens carrying the given claims."""

    def _make(**claims: Any) -> str:
        return jwt.encode(claims, TEST_SIGNING_KEY, algorithm="HS256")

    return _make


@pytest.fixture
def make_record() -> Callable[..., TokenRecord]:
    """Factory for token records expiring ``expires_in`` seconds from now."""

    def _make(
        access_token: str = "access-1",
        refresh_token: str | None = "refresh-1",
        expires_in: int = 3600,
        id_token: str | None = None,
        scope: str = "User.Read",
    ) -> TokenRecord:
        return TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            id_token=id_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            scope=scope,
        )

    return _make


@pytest.fixture
def make_response() -> Callable[..., requests.Response]:
    """Factory for real ``requests.Response`` objects with a JSON body."""

    def _make(
        status_code: int,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        response = requests.Response()
        response.status_code = status_code
        if payload is None:
            response._content = b""
        else:
            response._content = json.dumps(payload).encode("utf-8")
            response.headers["Content-Type"] = "application/json"
        if headers:
            response.headers.update(headers)
        return response

    return _make


@pytest.fixture
def http() -> MagicMock:
    """Stand-in for the requests session used for token and API calls."""
    return MagicMock(spec=requests.Session)
