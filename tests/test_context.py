"""Tests for the session factory and application context."""

from __future__ import annotations

import threading
from collections.abc import Callable
from unittest.mock import patch

import pytest

from outlook_mcp.auth.models import SessionState, TokenRecord
from outlook_mcp.auth.oauth import OAuthSession
from outlook_mcp.config import Settings
from outlook_mcp.context import SessionFactory, build_context
from outlook_mcp.graph.client import GraphClient
from outlook_mcp.utils.errors import ConfigurationError


class TestSessionFactory:
    """Tests for SessionFactory.get_session."""

    def test_returns_same_instance(self, settings: Settings) -> None:
        factory = SessionFactory()

        first = factory.get_session(settings)
        second = factory.get_session()

        assert first is second
        assert first.state is SessionState.INITIALIZED

    def test_later_settings_are_ignored(self, settings: Settings) -> None:
        factory = SessionFactory()
        session = factory.get_session(settings)

        other = settings.model_copy(update={"client_id": "other-client"})
        assert factory.get_session(other) is session
        assert session.settings.client_id == "test-client-id"

    def test_concurrent_first_callers_share_one_session(self, settings: Settings) -> None:
        factory = SessionFactory(settings)
        sessions: list[OAuthSession] = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            sessions.append(factory.get_session())

        with patch(
            "outlook_mcp.context.OAuthSession", wraps=OAuthSession
        ) as constructor:
            threads = [threading.Thread(target=worker) for _ in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=5)

        assert len(sessions) == 8
        assert all(s is sessions[0] for s in sessions)
        assert constructor.call_count == 1

    def test_falls_back_to_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MS_CLIENT_ID", raising=False)

        with pytest.raises(ConfigurationError):
            SessionFactory().get_session()

    def test_close_without_session(self) -> None:
        SessionFactory().close()


class TestBuildContext:
    """Tests for build_context and AppContext."""

    def test_wires_shared_collaborators(
        self, settings: Settings, make_record: Callable[..., TokenRecord]
    ) -> None:
        ctx = build_context(settings)
        ctx.token_store.put("user@example.com", make_record())

        session = ctx.session()
        client = ctx.client()

        assert session is ctx.sessions.get_session()
        assert session.token_store is ctx.token_store
        assert session.state is SessionState.AUTHENTICATED
        assert isinstance(client, GraphClient)
        assert client.user_id == "user@example.com"
        assert ctx.rate_limiter.max_requests == settings.rate_limit_max_requests

    def test_close_releases_listener(self, settings: Settings) -> None:
        ctx = build_context(settings, open_browser=lambda url: True)
        ctx.session().get_auth_url()
        assert ctx.session().listener_running

        ctx.close()

        assert not ctx.session().listener_running
