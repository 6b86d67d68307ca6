"""OAuth 2.0 authorization-code sign-in with silent refresh.

This module owns the whole token lifecycle for one process:

1. Silent acquisition: a cached record is returned while fresh and renewed
   through the refresh-token grant once it goes stale. Failures here are
   an expected outcome and are reported as "no token", never raised.

2. Interactive flow: a transient local listener is bound to the redirect
   URI, the browser is sent to the authorization endpoint, and the caller
   waits on a one-shot channel that the listener fills once the returned
   code has been exchanged (or the provider reported an error). The wait
   is bounded by a timeout, after which all pending state is cleared.

Security considerations:
- Every flow carries a random ``state`` value that the callback must echo
- PKCE (S256) binds the authorization code to this process
- The client secret, when configured, is only sent to the token endpoint
"""

from __future__ import annotations

import base64
import hashlib
import logging
import queue
import secrets
import threading
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import requests

from outlook_mcp.auth.callback import CallbackOutcome, CallbackResult, CallbackServer
from outlook_mcp.auth.models import SessionState, TokenRecord
from outlook_mcp.auth.storage import TokenStore
from outlook_mcp.config import Settings
from outlook_mcp.graph.client import GraphClient
from outlook_mcp.middleware.rate_limiter import RateLimiter
from outlook_mcp.utils.errors import (
    AuthenticationError,
    ListenerError,
    NetworkError,
    OutlookMCPError,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)

# Cache key used when neither the caller nor the ID token names the identity.
DEFAULT_IDENTITY = "default"

REAUTH_HINT = "Re-run the authenticate step to sign in again"


def generate_pkce() -> tuple[str, str]:
    """Return a PKCE ``(code_verifier, code_challenge)`` pair using S256."""
    code_verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


@dataclass
class PendingFlow:
    """One outstanding authorization request.

    ``channel`` is set only when a caller is blocked in ``authenticate()``;
    flows started by ``get_auth_url()`` have nobody waiting on them.
    """

    state: str
    code_verifier: str
    auth_url: str
    channel: queue.Queue[TokenRecord | OutlookMCPError] | None = field(default=None)


class OAuthSession:
    """Manages sign-in, token caching and refresh for one application.

    Attributes:
        settings: Validated configuration.
        token_store: Persistence for token records.

    Example:
        >>> session = OAuthSession(settings, TokenStore(settings.token_cache_path))
        >>> session.initialize()
        >>> token = session.get_access_token()   # may open a browser
    """

    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore,
        rate_limiter: RateLimiter | None = None,
        user_id: str | None = None,
        http: requests.Session | None = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        """Initialize the session.

        Args:
            settings: Validated configuration.
            token_store: Where token records are persisted.
            rate_limiter: Shared limiter handed to the API client; one is built
                from the settings when omitted.
            user_id: Identity to manage. When omitted the identity is derived
                from the ID token on sign-in.
            http: requests session used for token endpoint calls.
            open_browser: Callable that opens the authorization URL.
        """
        self.settings = settings
        self.token_store = token_store
        self._rate_limiter = rate_limiter or RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        self._bound_user_id = user_id
        self._current_user_id: str | None = None
        self._http = http or requests.Session()
        self._open_browser = open_browser

        self._state = SessionState.UNINITIALIZED
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._auth_in_progress = False
        self._flow: PendingFlow | None = None
        self._listener: CallbackServer | None = None
        self._client: GraphClient | None = None

        logger.info(
            "OAuth session created for client %s... (%s client)",
            settings.client_id[:5],
            "confidential" if settings.is_confidential else "public",
        )
        logger.debug("Redirect URI: %s", settings.redirect_uri)
        logger.debug("Scopes: %s", ", ".join(settings.scopes))

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def auth_in_progress(self) -> bool:
        return self._auth_in_progress

    @property
    def user_id(self) -> str | None:
        """Identity this session manages, if known yet."""
        return self._bound_user_id or self._current_user_id

    @property
    def listener_running(self) -> bool:
        return self._listener is not None and self._listener.is_running

    def _set_state(self, state: SessionState) -> None:
        if self._state is not state:
            logger.debug("Session state %s -> %s", self._state.value, state.value)
            self._state = state

    def initialize(self) -> OAuthSession:
        """Try to pick up a cached token without user interaction.

        Never starts the interactive flow.

        Returns:
            This session, in state AUTHENTICATED or INITIALIZED.

        Raises:
            TokenError: If the token cache exists but cannot be read.
        """
        logger.info("Starting authentication initialization")
        self.token_store.list_identities()

        record = self.silent_acquire()
        with self._lock:
            if self._state is not SessionState.AUTHENTICATING:
                self._set_state(
                    SessionState.AUTHENTICATED if record else SessionState.INITIALIZED
                )
        if record:
            logger.info("Auth session initialized with cached token")
        else:
            logger.info("No cached token available. Interactive authentication required.")
        return self

    # =========================================================================
    # Silent acquisition
    # =========================================================================

    def _resolve_identity(self) -> str | None:
        """Pick the cached identity to use (raises if several are ambiguous)."""
        if self._bound_user_id:
            return self._bound_user_id
        identities = self.token_store.list_identities()
        if not identities:
            logger.info("No accounts found in token cache")
            return None
        if len(identities) > 1:
            raise AuthenticationError(
                "Several identities are cached; the session needs an explicit user_id",
                details={"identities": sorted(identities)},
            )
        return next(iter(identities))

    def silent_acquire(self, force_refresh: bool = False) -> TokenRecord | None:
        """Return a usable token record without user interaction.

        A fresh cached record is returned as-is; a stale one (or any record
        when ``force_refresh`` is set) is renewed with its refresh token.
        Any failure yields None and leaves the cache untouched.

        Args:
            force_refresh: Refresh even if the cached token looks fresh.
        """
        try:
            user_id = self._resolve_identity()
            if user_id is None:
                return None
            record = self.token_store.get(user_id)
            if record is None:
                return None

            if not force_refresh and not record.is_stale():
                logger.debug("Using cached token for %s", user_id)
                self._current_user_id = user_id
                return record

            with self._refresh_lock:
                latest = self.token_store.get(user_id) or record
                # Another thread may have refreshed while we waited for the lock
                refreshed_elsewhere = latest.access_token != record.access_token
                if (refreshed_elsewhere or not force_refresh) and not latest.is_stale():
                    self._current_user_id = user_id
                    return latest
                logger.info(
                    "Refreshing token for %s (%s)",
                    user_id,
                    "forced" if force_refresh else "expired or about to expire",
                )
                refreshed = self._refresh(user_id, latest)

            self._current_user_id = user_id
            return refreshed

        except OutlookMCPError as e:
            logger.warning("Silent token acquisition failed: %s", e)
            return None

    def _refresh(self, user_id: str, record: TokenRecord) -> TokenRecord:
        """Redeem ``record``'s refresh token and persist the result."""
        if not record.refresh_token:
            raise AuthenticationError(
                "No refresh token available",
                details={"hint": REAUTH_HINT},
            )

        data = {
            "client_id": self.settings.client_id,
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "scope": self.settings.scope_string,
        }
        if self.settings.client_secret:
            data["client_secret"] = self.settings.client_secret

        payload = self._post_token(data)
        refreshed = TokenRecord.from_token_response(payload, previous=record)
        self.token_store.put(user_id, refreshed)
        logger.info("Successfully refreshed access token for %s", user_id)
        return refreshed

    # =========================================================================
    # Token endpoint
    # =========================================================================

    def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        """POST a form-encoded grant to the token endpoint.

        Raises:
            NetworkError: If the token endpoint could not be reached.
            TokenExchangeError: If the provider rejected the grant.
        """
        grant = data["grant_type"]
        try:
            response = self._http.post(
                self.settings.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.settings.http_timeout_seconds,
            )
        except requests.RequestException as e:
            logger.error("No response from token endpoint (%s): %s", grant, e)
            raise NetworkError(
                f"No response received from token endpoint: {e}",
                details={"grant_type": grant, "error_type": type(e).__name__},
            ) from e

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            error_code = payload.get("error") if isinstance(payload, dict) else None
            description = (
                payload.get("error_description") if isinstance(payload, dict) else None
            )
            logger.error(
                "Token endpoint rejected %s grant (%d): %s",
                grant,
                response.status_code,
                error_code or "unknown error",
            )
            raise TokenExchangeError(
                f"Token request failed: {error_code or response.status_code}"
                + (f" - {description}" if description else ""),
                status_code=response.status_code,
                error_code=error_code,
                details={"grant_type": grant, "hint": REAUTH_HINT},
            )

        if not isinstance(payload, dict):
            raise TokenExchangeError(
                "Token endpoint returned a non-JSON response",
                status_code=response.status_code,
                details={"grant_type": grant},
            )
        return payload

    def exchange_code(self, code: str, code_verifier: str | None = None) -> TokenRecord:
        """Redeem an authorization code and persist the resulting tokens.

        Uses the confidential-client form when a client secret is configured
        and the public-client form otherwise.

        Args:
            code: Authorization code from the redirect.
            code_verifier: PKCE verifier for the flow that produced ``code``;
                defaults to the pending flow's verifier.

        Returns:
            The stored token record.

        Raises:
            TokenExchangeError: If the provider rejected the code.
            NetworkError: If the token endpoint could not be reached.
        """
        logger.info("Exchanging authorization code for tokens")
        if code_verifier is None and self._flow is not None:
            code_verifier = self._flow.code_verifier

        data = {
            "client_id": self.settings.client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.redirect_uri,
            "scope": self.settings.scope_string,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        if self.settings.client_secret:
            logger.debug("Using confidential client flow to exchange code")
            data["client_secret"] = self.settings.client_secret
        else:
            logger.debug("Using public client flow to exchange code")

        payload = self._post_token(data)
        record = TokenRecord.from_token_response(payload)
        user_id = self._bound_user_id or record.identity() or DEFAULT_IDENTITY
        self.token_store.put(user_id, record)

        with self._lock:
            self._current_user_id = user_id
            self._client = None
            self._set_state(SessionState.AUTHENTICATED)
        self.get_client()

        logger.info("Successfully acquired tokens for %s", user_id)
        return record

    # =========================================================================
    # Interactive flow
    # =========================================================================

    def _new_flow(
        self, channel: queue.Queue[TokenRecord | OutlookMCPError] | None = None
    ) -> PendingFlow:
        state = secrets.token_urlsafe(32)
        code_verifier, code_challenge = generate_pkce()
        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": self.settings.redirect_uri,
            "response_mode": "query",
            "scope": self.settings.scope_string,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        auth_url = f"{self.settings.authorize_url}?{urlencode(params)}"
        logger.debug("Created auth URL with state: %s", state[:8] + "...")
        return PendingFlow(
            state=state,
            code_verifier=code_verifier,
            auth_url=auth_url,
            channel=channel,
        )

    def _ensure_listener(self) -> None:
        with self._lock:
            if self._listener is None:
                self._listener = CallbackServer(
                    self.settings.redirect_uri, self.handle_callback
                )
            listener = self._listener
        listener.start()

    def _launch_browser(self, auth_url: str) -> None:
        logger.info("Opening browser for authentication")
        try:
            opened = self._open_browser(auth_url)
        except webbrowser.Error as e:
            logger.warning("Failed to open browser: %s", e)
            opened = False
        if not opened:
            logger.warning("Please open this URL manually to sign in: %s", auth_url)

    def _finish_flow(self, flow: PendingFlow, outcome: TokenRecord | OutlookMCPError) -> None:
        """Detach ``flow`` and deliver ``outcome`` to its waiter, if any."""
        with self._lock:
            if self._flow is flow:
                self._flow = None
        if flow.channel is not None:
            try:
                flow.channel.put_nowait(outcome)
            except queue.Full:
                logger.debug("Sign-in flow already resolved, dropping late outcome")
        else:
            # Nobody is blocked in authenticate(); release the port ourselves.
            threading.Thread(
                target=self._stop_listener_if_idle,
                name="oauth-callback-shutdown",
                daemon=True,
            ).start()

    def _stop_listener_if_idle(self) -> None:
        with self._lock:
            listener = self._listener if self._flow is None else None
        if listener is not None:
            listener.stop()

    def authenticate(self, timeout: float | None = None) -> TokenRecord:
        """Obtain a token, interactively if silent acquisition fails.

        Starts the local redirect listener, opens the authorization URL and
        blocks until the redirect has been processed. Only one interactive
        flow may run at a time.

        Args:
            timeout: Seconds to wait for the redirect; defaults to
                ``settings.auth_timeout_seconds`` (5 minutes).

        Returns:
            The token record obtained.

        Raises:
            AuthenticationError: If another interactive flow is in progress.
            ListenerError: On timeout, bind failure, or an error callback.
            TokenExchangeError: If the returned code could not be redeemed.
        """
        if timeout is None:
            timeout = self.settings.auth_timeout_seconds

        logger.debug("Trying silent token acquisition first...")
        record = self.silent_acquire()
        if record is not None:
            with self._lock:
                self._set_state(SessionState.AUTHENTICATED)
            return record

        channel: queue.Queue[TokenRecord | OutlookMCPError] = queue.Queue(maxsize=1)
        with self._lock:
            if self._auth_in_progress:
                raise AuthenticationError(
                    "Authentication already in progress",
                    details={"hint": "Complete the sign-in already open in the browser"},
                )
            self._auth_in_progress = True
            flow = self._new_flow(channel)
            self._flow = flow
            self._set_state(SessionState.AUTHENTICATING)

        logger.info("Starting browser-based authentication flow")
        try:
            self._ensure_listener()
            self._launch_browser(flow.auth_url)

            logger.debug("Waiting for authentication callback...")
            try:
                outcome = channel.get(timeout=timeout)
            except queue.Empty:
                logger.error("Authentication timed out after %g seconds", timeout)
                raise ListenerError(
                    f"Authentication timed out after {timeout:g} seconds",
                    details={"timeout_seconds": timeout, "hint": REAUTH_HINT},
                ) from None

            if isinstance(outcome, OutlookMCPError):
                raise outcome
            logger.info("Authentication completed successfully")
            return outcome

        finally:
            with self._lock:
                if self._flow is flow:
                    self._flow = None
                self._auth_in_progress = False
                if self._state is SessionState.AUTHENTICATING:
                    self._set_state(SessionState.INITIALIZED)
            self.cleanup()

    def get_auth_url(self) -> str:
        """Start the listener and return an authorization URL without waiting.

        Used when the URL is handed to the user out-of-band; completion is
        observed later through ``is_authenticated()``. A flow that is already
        pending keeps its URL.

        Raises:
            ListenerError: If the callback port cannot be bound.
        """
        with self._lock:
            if self._flow is None:
                self._flow = self._new_flow()
            auth_url = self._flow.auth_url

        self._ensure_listener()
        logger.info("Auth URL generated: %s...", auth_url[:60])
        return auth_url

    def handle_callback(self, result: CallbackResult) -> CallbackOutcome:
        """Process a redirect received by the local listener.

        Resolves (or fails) the pending flow and tells the listener what to
        show in the browser.
        """
        with self._lock:
            flow = self._flow

        if flow is None:
            logger.warning("OAuth callback received but no sign-in is pending")
            return CallbackOutcome(
                success=False,
                message="No sign-in is pending. Start authentication again.",
            )

        if result.error:
            logger.error(
                "Authentication error: %s - %s", result.error, result.error_description
            )
            self._finish_flow(
                flow,
                ListenerError(
                    f"{result.error}: {result.error_description or 'no description'}",
                    details={"oauth_error": result.error},
                ),
            )
            return CallbackOutcome(
                success=False,
                message=f"Authentication failed: {result.error}"
                + (f" - {result.error_description}" if result.error_description else ""),
            )

        if not result.code:
            logger.error("Unknown OAuth callback format - no code or error")
            self._finish_flow(flow, ListenerError("Unknown OAuth callback format"))
            return CallbackOutcome(
                success=False,
                message="No authentication code or error was received.",
            )

        if result.state != flow.state:
            logger.error("OAuth callback state mismatch")
            self._finish_flow(
                flow,
                ListenerError(
                    "State mismatch - possible CSRF attack",
                    details={"hint": "Request may have been tampered with"},
                ),
            )
            return CallbackOutcome(
                success=False,
                message="Security check failed (state mismatch).",
            )

        logger.debug("Received authorization code with state: %s", result.state[:8] + "...")
        try:
            record = self.exchange_code(result.code, code_verifier=flow.code_verifier)
        except OutlookMCPError as e:
            logger.error("Error exchanging code for token: %s", e)
            self._finish_flow(flow, e)
            return CallbackOutcome(
                success=False,
                message=f"Could not complete sign-in: {e.message}",
            )

        self._finish_flow(flow, record)
        return CallbackOutcome(
            success=True,
            message="You have been successfully authenticated. You can now close "
            "this window and return to your application.",
        )

    # =========================================================================
    # Public token access
    # =========================================================================

    def get_access_token(self, force_refresh: bool = False) -> str:
        """Return a valid access token, signing in interactively if needed.

        Args:
            force_refresh: Redeem the refresh token even if the cached access
                token still looks valid (used after a 401). A failed forced
                refresh raises instead of falling back to the browser.

        Raises:
            AuthenticationError: If no token can be obtained by any path, or
                a forced refresh fails.
        """
        record = self.silent_acquire(force_refresh=force_refresh)
        if record is not None:
            return record.access_token

        if force_refresh:
            raise AuthenticationError(
                "Token refresh failed; interactive sign-in is required",
                details={"user_id": self.user_id},
            )

        if self._bound_user_id is None:
            identities = self.token_store.list_identities()
            if len(identities) > 1:
                raise AuthenticationError(
                    "Several identities are cached; the session needs an explicit user_id",
                    details={"identities": sorted(identities)},
                )

        logger.info("No valid token in cache, starting interactive auth")
        return self.authenticate().access_token

    def is_authenticated(self) -> bool:
        """True if a token record is cached for the managed identity.

        This is a presence check; the token may still need a refresh.
        """
        try:
            identities = self.token_store.list_identities()
        except OutlookMCPError as e:
            logger.error("Error checking authentication status: %s", e)
            return False
        if self._bound_user_id:
            return self._bound_user_id in identities
        return bool(identities)

    def get_client(self) -> GraphClient:
        """Return the authenticated API client, building it on first use."""
        with self._lock:
            if self._client is None:
                self._client = GraphClient(
                    self,
                    rate_limiter=self._rate_limiter,
                    base_url=self.settings.api_base_url,
                    user_id=self.user_id or DEFAULT_IDENTITY,
                    http=self._http,
                    timeout=self.settings.http_timeout_seconds,
                )
                logger.debug("API client initialized for %s", self._client.user_id)
            return self._client

    # =========================================================================
    # Sign-out and cleanup
    # =========================================================================

    def sign_out(self) -> bool:
        """Remove the cached identities this session manages.

        Returns:
            True if anything was removed, False if nothing was cached.
        """
        identities = self.token_store.list_identities()
        if self._bound_user_id:
            targets = [self._bound_user_id] if self._bound_user_id in identities else []
        else:
            targets = sorted(identities)

        if not targets:
            logger.info("No accounts to sign out")
            return False

        for user_id in targets:
            self.token_store.delete(user_id)

        with self._lock:
            self._client = None
            self._current_user_id = None
            if self._state is not SessionState.AUTHENTICATING:
                self._set_state(SessionState.INITIALIZED)

        logger.info("Signed out %d account(s)", len(targets))
        return True

    def cleanup(self) -> None:
        """Stop the callback listener and cancel any pending sign-in.

        Safe to call repeatedly.
        """
        with self._lock:
            flow = self._flow
            self._flow = None
            listener = self._listener

        if flow is not None:
            self._finish_flow(flow, ListenerError("Authentication was cancelled"))
        if listener is None or not listener.stop():
            logger.debug("No authentication listener to close")


__all__ = [
    "OAuthSession",
    "PendingFlow",
    "generate_pkce",
    "DEFAULT_IDENTITY",
]
