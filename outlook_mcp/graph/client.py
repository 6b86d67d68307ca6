"""Authenticated Microsoft Graph API client."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import requests

from outlook_mcp.middleware.rate_limiter import RateLimiter
from outlook_mcp.utils.errors import (
    ApiError,
    AuthenticationError,
    NetworkError,
    OutlookMCPError,
    ThrottlingError,
)

if TYPE_CHECKING:
    from outlook_mcp.auth.oauth import OAuthSession

logger = logging.getLogger(__name__)

NEXT_LINK = "@odata.nextLink"
DEFAULT_RETRY_AFTER_SECONDS = 30
DEFAULT_MAX_PAGES = 10


def parse_retry_after(value: str | None) -> int:
    """Convert a Retry-After header (seconds or HTTP date) to whole seconds."""
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(0, int(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable Retry-After header: %r", value)
        return DEFAULT_RETRY_AFTER_SECONDS
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max(0, int((retry_at - datetime.now(UTC)).total_seconds()))


def _decode_body(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class GraphClient:
    """Issues Graph API requests on behalf of one session.

    Every logical call consumes one rate-limit slot, carries a bearer token
    from the session, and is retried exactly once after a forced token
    refresh when the API answers 401.
    """

    def __init__(
        self,
        session: OAuthSession,
        rate_limiter: RateLimiter,
        base_url: str,
        user_id: str = "default",
        http: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._session = session
        self._rate_limiter = rate_limiter
        self._base_url = base_url.rstrip("/")
        self.user_id = user_id
        self._http = http or requests.Session()
        self._timeout = timeout
        self._request_count = 0

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    def _send(
        self,
        method: str,
        url: str,
        token: str,
        body: Any,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> requests.Response:
        request_headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)
        try:
            return self._http.request(
                method,
                url,
                headers=request_headers,
                json=body,
                params=params,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error("No response received for %s %s: %s", method, url, e)
            raise NetworkError(
                "No response received from Microsoft Graph API",
                details={"method": method, "url": url, "error_type": type(e).__name__},
            ) from e

    def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        full_response: bool = False,
    ) -> Any:
        """Send one request to the Graph API.

        Args:
            method: HTTP method.
            endpoint: Path relative to the API base URL, or an absolute URL
                (as found in ``@odata.nextLink``).
            body: JSON body.
            params: Query parameters.
            headers: Extra headers; they override the defaults.
            full_response: Return the ``requests.Response`` instead of the
                decoded body.

        Returns:
            Decoded JSON body, None for an empty (204) response, or the raw
            response when ``full_response`` is set.

        Raises:
            RateLimitExceeded: If the local quota is used up (nothing is sent).
            AuthenticationError: If the request is still unauthorized after a
                token refresh, or the refresh itself fails.
            ThrottlingError: On HTTP 429.
            ApiError: On any other 4xx/5xx.
            NetworkError: If no response was received.
        """
        method = method.upper()
        self._rate_limiter.check(self.user_id)

        self._request_count += 1
        request_id = f"{self.user_id}-{self._request_count}"
        url = self._url(endpoint)
        logger.debug("[%s] %s %s", request_id, method, url)

        token = self._session.get_access_token()
        response = self._send(method, url, token, body, params, headers)

        if response.status_code == 401:
            logger.warning("[%s] Received 401 Unauthorized, refreshing token", request_id)
            try:
                token = self._session.get_access_token(force_refresh=True)
            except OutlookMCPError as e:
                logger.error("[%s] Token refresh failed: %s", request_id, e)
                raise AuthenticationError(
                    "Authentication failed. Please re-run the authenticate step.",
                    details={"endpoint": endpoint, "reason": e.message},
                ) from e
            logger.info("[%s] Token refreshed, retrying request", request_id)
            response = self._send(method, url, token, body, params, headers)

        return self._handle_response(response, request_id, method, endpoint, full_response)

    def _handle_response(
        self,
        response: requests.Response,
        request_id: str,
        method: str,
        endpoint: str,
        full_response: bool,
    ) -> Any:
        status = response.status_code
        if status < 400:
            logger.debug("[%s] Response %d", request_id, status)
            if full_response:
                return response
            if status == 204:
                return None
            return _decode_body(response)

        payload = _decode_body(response)
        error = payload.get("error") if isinstance(payload, dict) else None
        error_code = error.get("code") if isinstance(error, dict) else None
        error_message = error.get("message") if isinstance(error, dict) else None

        if status == 401:
            logger.error("[%s] Still unauthorized after token refresh", request_id)
            raise AuthenticationError(
                "Authentication failed. Please re-run the authenticate step.",
                details={"endpoint": endpoint, "error_code": error_code},
            )

        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("[%s] Throttled by Graph API, retry after %ds", request_id, retry_after)
            raise ThrottlingError(
                f"Request throttled. Try again in {retry_after} seconds.",
                retry_after_seconds=retry_after,
                details={"endpoint": endpoint},
            )

        logger.error(
            "[%s] Graph API error %d on %s %s: %s",
            request_id,
            status,
            method,
            endpoint,
            error_code or "unknown",
        )
        raise ApiError(
            error_message or f"Graph API request failed with status {status}",
            status_code=status,
            error_code=error_code or "unknown",
            payload=payload,
            details={"method": method, "endpoint": endpoint},
        )

    # =========================================================================
    # Convenience methods
    # =========================================================================

    def get(self, endpoint: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return self.request("GET", endpoint, params=params, **kwargs)

    def post(self, endpoint: str, body: Any = None, **kwargs: Any) -> Any:
        return self.request("POST", endpoint, body=body, **kwargs)

    def patch(self, endpoint: str, body: Any = None, **kwargs: Any) -> Any:
        return self.request("PATCH", endpoint, body=body, **kwargs)

    def delete(self, endpoint: str, **kwargs: Any) -> Any:
        return self.request("DELETE", endpoint, **kwargs)

    def get_paginated(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> list[Any]:
        """Fetch a collection, following ``@odata.nextLink`` links.

        Args:
            endpoint: Collection endpoint.
            params: Query parameters for the first page only; next links
                already embed them.
            max_pages: Upper bound on pages fetched, the first page included.

        Returns:
            The concatenated ``value`` items of every page fetched.
        """
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")

        items: list[Any] = []
        page = self.get(endpoint, params=params) or {}
        pages = 1
        items.extend(page.get("value", []))
        next_link = page.get(NEXT_LINK)

        while next_link and pages < max_pages:
            logger.debug("Fetching page %d: %s", pages + 1, next_link)
            page = self.get(next_link) or {}
            pages += 1
            items.extend(page.get("value", []))
            next_link = page.get(NEXT_LINK)

        if next_link:
            logger.warning(
                "Stopped after %d pages; more results are available at %s",
                max_pages,
                next_link,
            )
        return items

    def batch(self, requests_: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Send up to 20 sub-requests through the ``$batch`` endpoint.

        Each sub-request needs ``id``, ``method`` and ``url``; URLs are taken
        relative to the API version root.

        Returns:
            The ``responses`` array of the batch reply.
        """
        if not requests_:
            raise ValueError("Batch requires at least one request")
        if len(requests_) > 20:
            raise ValueError("Batch is limited to 20 requests")

        prepared = []
        for item in requests_:
            missing = {"id", "method", "url"} - item.keys()
            if missing:
                raise ValueError(f"Batch request missing fields: {sorted(missing)}")
            url = item["url"]
            for prefix in ("/v1.0/", "/beta/"):
                if url.startswith(prefix):
                    url = "/" + url[len(prefix):]
            prepared.append({**item, "url": url})

        result = self.post("$batch", body={"requests": prepared}) or {}
        return list(result.get("responses", []))


__all__ = [
    "GraphClient",
    "parse_retry_after",
    "NEXT_LINK",
]
