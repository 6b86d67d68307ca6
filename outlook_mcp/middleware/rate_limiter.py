"""Rate limiting middleware using a fixed-window counter."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from outlook_mcp.utils.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class Window:
    """Request counter for one key, valid until ``expires_at``."""

    count: int
    expires_at: float


class RateLimiter:
    """Per-key fixed-window rate limiter.

    The first request for a key opens a window of ``window_seconds``. Up to
    ``max_requests`` checks succeed inside it; further checks fail until the
    window expires, at which point a full quota is available again. Counters
    are never decremented by completed requests.
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests per window (default 30).
            window_seconds: Window width in seconds (default 60).
            clock: Monotonic time source, replaceable in tests.
        """
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, Window] = {}
        self._lock = threading.Lock()

        logger.info(
            "RateLimiter initialized: %d requests per %g seconds",
            max_requests,
            window_seconds,
        )

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def _current(self, key: str, now: float) -> Window | None:
        """Return the live window for key, dropping it if expired (must hold lock)."""
        window = self._windows.get(key)
        if window is not None and now >= window.expires_at:
            del self._windows[key]
            return None
        return window

    def check(self, key: str = "default") -> None:
        """Count one request against ``key``.

        Args:
            key: Identity (or other requester id) to count against.

        Raises:
            RateLimitExceeded: If the window's quota is already used up.
        """
        with self._lock:
            now = self._clock()
            window = self._current(key, now)
            if window is None:
                window = Window(count=0, expires_at=now + self._window_seconds)
                self._windows[key] = window

            if window.count >= self._max_requests:
                retry_after = max(1, math.ceil(window.expires_at - now))
                logger.warning(
                    "Rate limit exceeded for %s: %d/%d",
                    key,
                    window.count,
                    self._max_requests,
                )
                raise RateLimitExceeded(
                    f"Rate limit exceeded. Try again in {retry_after} seconds.",
                    retry_after_seconds=retry_after,
                    details={"key": key, "limit": self._max_requests},
                )

            window.count += 1
            logger.debug(
                "Rate limit check passed for %s: %d/%d",
                key,
                window.count,
                self._max_requests,
            )

    def usage(self, key: str = "default") -> dict[str, int | None]:
        """Current usage for ``key``.

        Returns:
            Dict with ``limit``, ``current``, ``remaining`` and ``reset``
            (seconds until the window expires, None if no window is open).
        """
        with self._lock:
            now = self._clock()
            window = self._current(key, now)
            current = window.count if window else 0
            reset = math.ceil(window.expires_at - now) if window else None
            return {
                "limit": self._max_requests,
                "current": current,
                "remaining": max(0, self._max_requests - current),
                "reset": reset,
            }

    def reset(self, key: str = "default") -> None:
        """Discard the window for ``key``."""
        with self._lock:
            if self._windows.pop(key, None) is not None:
                logger.debug("Rate limit counter reset for %s", key)

    def cleanup_stale(self) -> int:
        """Remove expired windows so idle keys don't accumulate.

        Returns:
            Number of windows removed.
        """
        with self._lock:
            now = self._clock()
            stale = [k for k, w in self._windows.items() if now >= w.expires_at]
            for key in stale:
                del self._windows[key]

        if stale:
            logger.debug("Cleaned up %d expired rate limit windows", len(stale))
        return len(stale)


__all__ = [
    "RateLimiter",
    "Window",
]
