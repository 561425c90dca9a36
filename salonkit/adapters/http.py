"""
Resilient remote call plumbing for the customer portal.

A single request goes out through ``httpx`` and comes back as ``Ok`` or
``Err``; transport errors, error statuses and non-JSON bodies never raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any, Dict, Optional

import httpx

from ..domain.exceptions import ConfigurationError
from ..domain.results import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Backend service is temporarily unavailable. Please try again later."
NETWORK_MESSAGE = "Network error. Please try again."


@dataclass(frozen=True)
class RequestCredentials:
    """
    Visitor credentials forwarded with a single request.

    Passed explicitly per call; the client keeps no credential state between
    requests, so concurrent visitors never see each other's session.
    """
    cookie: Optional[str] = None
    csrf_token: Optional[str] = None


def _refusing_cookie_jar() -> CookieJar:
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


class PortalHttpClient:
    """
    Thin async HTTP client bound to one backend and one tenant.

    Every request carries the ``X-Tenant`` header. The cookie jar refuses
    every cookie, so a ``Set-Cookie`` answered to one visitor is never sent
    on anyone else's request.
    """

    def __init__(
        self,
        base_url: str,
        tenant: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Customer portal base URL
            tenant: Tenant identifier sent with every request
            timeout: Per-request timeout in seconds
            transport: Optional transport (``httpx.MockTransport`` in tests)
        """
        if not tenant or not tenant.strip():
            raise ConfigurationError("A tenant identifier is required")

        self.tenant = tenant.strip()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            cookies=_refusing_cookie_jar(),
        )

    async def __aenter__(self) -> "PortalHttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, credentials: Optional[RequestCredentials]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Tenant": self.tenant,
        }
        if credentials is not None:
            if credentials.cookie:
                headers["Cookie"] = credentials.cookie
            if credentials.csrf_token:
                headers["X-CSRF-Token"] = credentials.csrf_token
        return headers

    async def get(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        credentials: Optional[RequestCredentials] = None,
    ) -> Result[Any]:
        return await self.request("GET", path, params=params, credentials=credentials)

    async def post(
        self,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        credentials: Optional[RequestCredentials] = None,
    ) -> Result[Any]:
        return await self.request("POST", path, json=json, params=params, credentials=credentials)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        credentials: Optional[RequestCredentials] = None,
    ) -> Result[Any]:
        """
        Perform one request and normalize the outcome.

        Returns:
            ``Ok(parsed_json)`` on a 2xx JSON response, otherwise ``Err``
        """
        logger.debug("%s %s params=%s", method, path, params)

        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(credentials),
            )
        except httpx.TimeoutException as exc:
            logger.debug("%s %s timed out: %s", method, path, exc)
            return Err(ErrorKind.NETWORK_ERROR, "The request timed out. Please try again.")
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            return Err(ErrorKind.NETWORK_ERROR, NETWORK_MESSAGE)

        return normalize_response(response)


def normalize_response(response: httpx.Response) -> Result[Any]:
    """
    Map an HTTP response onto ``Ok`` / ``Err``.

    5xx statuses and bodies that are not JSON count as the upstream being
    unavailable; 4xx statuses carry the body's own message.
    """
    status = response.status_code
    content_type = response.headers.get("content-type", "")

    if status == 404 and "application/json" not in content_type:
        return Err(ErrorKind.NOT_FOUND, f"Not found: {response.request.url.path}", status)

    if "application/json" not in content_type:
        logger.warning("Backend returned non-JSON (%s): %s", content_type or "no content type", status)
        message = (
            UNAVAILABLE_MESSAGE
            if status == 502
            else f"Server error: {status} {response.reason_phrase}".strip()
        )
        return Err(ErrorKind.UPSTREAM_UNAVAILABLE, message, status)

    try:
        data = response.json()
    except ValueError:
        logger.warning("Failed to parse JSON response with status %s", status)
        return Err(
            ErrorKind.UPSTREAM_UNAVAILABLE,
            f"Invalid response from server ({status})",
            status,
        )

    if response.is_success:
        return Ok(data, status)

    message = error_message(data) or f"API error: {status}"

    if status >= 500:
        kind = ErrorKind.UPSTREAM_UNAVAILABLE
    elif status == 404:
        kind = ErrorKind.NOT_FOUND
    elif status == 409:
        kind = ErrorKind.CONFLICT
    else:
        kind = ErrorKind.VALIDATION_ERROR

    return Err(kind, message, status, data)


def error_message(data: Any) -> Optional[str]:
    """Pull the human-readable message out of an error body."""
    if not isinstance(data, dict):
        return None
    for key in ("message", "error"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None
