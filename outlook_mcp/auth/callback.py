"""Local HTTP listener for the OAuth redirect.

The listener only exists while an interactive sign-in is pending. It binds
the host and port of the configured redirect URI, serves on a daemon thread,
and hands every request on the redirect path to a callback supplied by the
session. The browser always gets a small static status page back.
"""

from __future__ import annotations

import errno
import html
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

from outlook_mcp.utils.errors import ListenerError

logger = logging.getLogger(__name__)

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; text-align: center; margin-top: 50px; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px;
                  border: 1px solid #ddd; border-radius: 5px; }}
    .success {{ color: #4CAF50; }}
    .error {{ color: #F44336; }}
  </style>
</head>
<body>
  <div class="container">
    <h1 class="{css_class}">{title}</h1>
    <p>{message}</p>
  </div>
</body>
</html>
"""


@dataclass(frozen=True)
class CallbackResult:
    """Query parameters received on the redirect path."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_query(cls, query: str) -> CallbackResult:
        params = parse_qs(query)

        def first(name: str) -> str | None:
            values = params.get(name)
            return values[0] if values else None

        return cls(
            code=first("code"),
            state=first("state"),
            error=first("error"),
            error_description=first("error_description"),
        )


@dataclass(frozen=True)
class CallbackOutcome:
    """What the browser should be told about a processed callback."""

    success: bool
    message: str


def render_page(outcome: CallbackOutcome) -> bytes:
    """Render the static status page shown in the browser."""
    if outcome.success:
        title, css_class = "Authentication Successful", "success"
    else:
        title, css_class = "Authentication Failed", "error"
    return _PAGE_TEMPLATE.format(
        title=title,
        css_class=css_class,
        message=html.escape(outcome.message),
    ).encode("utf-8")


class CallbackServer:
    """Transient redirect listener bound to the redirect URI.

    Attributes:
        host: Interface the listener binds to (redirect URI host).
        port: Port from the redirect URI.
        path: Redirect path; any other path answers 404.

    Example:
        >>> server = CallbackServer("http://localhost:3000/auth/callback", handler)
        >>> server.start()
        >>> ...  # browser is redirected to /auth/callback?code=...
        >>> server.stop()
    """

    def __init__(
        self,
        redirect_uri: str,
        on_callback: Callable[[CallbackResult], CallbackOutcome],
    ) -> None:
        parsed = urlparse(redirect_uri)
        self.host = parsed.hostname or "localhost"
        self.port = parsed.port or (443 if parsed.scheme == "https" else 80)
        self.path = parsed.path or "/"
        self._on_callback = on_callback
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> int | None:
        """Port actually bound, or None when stopped."""
        if self._server is None:
            return None
        return int(self._server.server_address[1])

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        listener = self

        class CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for the OAuth redirect."""

            def do_GET(handler_self) -> None:  # noqa: N802, N805
                parsed = urlparse(handler_self.path)

                if parsed.path != listener.path:
                    logger.debug("Callback listener: no route for %s", parsed.path)
                    body = b"Not found"
                    handler_self.send_response(404)
                    handler_self.send_header("Content-Type", "text/plain")
                    handler_self.send_header("Content-Length", str(len(body)))
                    handler_self.end_headers()
                    handler_self.wfile.write(body)
                    return

                logger.info("Received OAuth callback")
                result = CallbackResult.from_query(parsed.query)
                try:
                    outcome = listener._on_callback(result)
                except Exception:
                    logger.exception("Unhandled error while processing OAuth callback")
                    outcome = CallbackOutcome(
                        success=False,
                        message="An unexpected error occurred. Check the server logs.",
                    )

                body = render_page(outcome)
                handler_self.send_response(200)
                handler_self.send_header("Content-Type", "text/html; charset=utf-8")
                handler_self.send_header("Content-Length", str(len(body)))
                handler_self.end_headers()
                handler_self.wfile.write(body)

            def log_message(handler_self, format: str, *args: object) -> None:  # noqa: N805
                logger.debug("Callback listener: %s", format % args)

        return CallbackHandler

    def start(self) -> None:
        """Bind the port and start serving. Calling it again is a no-op.

        Raises:
            ListenerError: If the port cannot be bound.
        """
        with self._lock:
            if self._server is not None:
                logger.debug("Callback listener already running on port %d", self.port)
                return

            try:
                server = HTTPServer((self.host, self.port), self._make_handler())
            except OSError as e:
                if e.errno == errno.EADDRINUSE:
                    hint = "Another process is using the port; free it or change MS_REDIRECT_URI"
                else:
                    hint = "Check that the redirect URI host is a local interface"
                logger.error("Could not bind callback listener to %s:%d: %s", self.host, self.port, e)
                raise ListenerError(
                    f"Could not bind callback listener to {self.host}:{self.port}",
                    details={"hint": hint, "error": str(e)},
                ) from e

            thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": 0.1},
                name="oauth-callback-listener",
                daemon=True,
            )
            thread.start()
            self._server = server
            self._thread = thread
            logger.info(
                "Authentication callback listener on http://%s:%d%s",
                self.host,
                self.bound_port,
                self.path,
            )

    def stop(self) -> bool:
        """Stop serving and release the port.

        Must not be called from a request handler thread.

        Returns:
            True if a running listener was stopped, False if none was running.
        """
        with self._lock:
            server, thread = self._server, self._thread
            self._server = None
            self._thread = None

        if server is None:
            logger.debug("No callback listener to stop")
            return False

        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5)
        logger.info("Authentication callback listener closed")
        return True


__all__ = [
    "CallbackServer",
    "CallbackResult",
    "CallbackOutcome",
    "render_page",
]
