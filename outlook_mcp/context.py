"""Application context and the process-wide session factory.

The entry point builds one :class:`AppContext` and passes it explicitly to
the server and tools. The context owns the shared collaborators (token
store, rate limiter) and a :class:`SessionFactory` that lazily constructs
the single OAuth session on first demand.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from outlook_mcp.auth.oauth import OAuthSession
from outlook_mcp.auth.storage import TokenStore
from outlook_mcp.config import Settings
from outlook_mcp.graph.client import GraphClient
from outlook_mcp.middleware.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class SessionFactory:
    """Creates the shared :class:`OAuthSession` once and hands it out.

    Construction is serialized: concurrent first callers all receive the
    same instance. Options passed after the session exists are ignored.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        token_store: TokenStore | None = None,
        rate_limiter: RateLimiter | None = None,
        **session_options: Any,
    ) -> None:
        self._settings = settings
        self._token_store = token_store
        self._rate_limiter = rate_limiter
        self._session_options = session_options
        self._session: OAuthSession | None = None
        self._lock = threading.Lock()

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def get_session(self, settings: Settings | None = None, **options: Any) -> OAuthSession:
        """Return the shared session, creating and initializing it if needed.

        Args:
            settings: Configuration for the first construction; falls back to
                the factory's settings, then to the environment.
            **options: Extra ``OAuthSession`` keyword arguments (``user_id``,
                ``http``, ``open_browser``) for the first construction.

        Raises:
            ConfigurationError: If no settings are available and the
                environment does not provide valid ones.
            TokenError: If the token cache cannot be read.
        """
        with self._lock:
            if self._session is not None:
                if settings is not None or options:
                    logger.debug("Session already created; ignoring new options")
                return self._session

            resolved = settings or self._settings or Settings.from_env()
            token_store = self._token_store or TokenStore(
                resolved.token_cache_path,
                encryption_key=resolved.token_encryption_key,
            )
            rate_limiter = self._rate_limiter or RateLimiter(
                max_requests=resolved.rate_limit_max_requests,
                window_seconds=resolved.rate_limit_window_seconds,
            )
            session = OAuthSession(
                resolved,
                token_store,
                rate_limiter=rate_limiter,
                **{**self._session_options, **options},
            )
            session.initialize()
            self._session = session
            logger.info("OAuth session created (state=%s)", session.state.value)
            return session

    def close(self) -> None:
        """Release the session's listener, if a session was created."""
        with self._lock:
            session = self._session
        if session is not None:
            session.cleanup()


@dataclass
class AppContext:
    """Shared collaborators handed to the server and every tool."""

    settings: Settings
    token_store: TokenStore
    rate_limiter: RateLimiter
    sessions: SessionFactory = field(repr=False)

    def session(self) -> OAuthSession:
        return self.sessions.get_session()

    def client(self) -> GraphClient:
        return self.session().get_client()

    def close(self) -> None:
        self.sessions.close()


def build_context(
    settings: Settings,
    open_browser: Callable[[str], bool] | None = None,
) -> AppContext:
    """Wire the token store, rate limiter and session factory for ``settings``."""
    token_store = TokenStore(
        settings.token_cache_path,
        encryption_key=settings.token_encryption_key,
    )
    rate_limiter = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    session_options: dict[str, Any] = {}
    if open_browser is not None:
        session_options["open_browser"] = open_browser

    sessions = SessionFactory(
        settings,
        token_store=token_store,
        rate_limiter=rate_limiter,
        **session_options,
    )
    return AppContext(
        settings=settings,
        token_store=token_store,
        rate_limiter=rate_limiter,
        sessions=sessions,
    )


__all__ = [
    "AppContext",
    "SessionFactory",
    "build_context",
]
