"""Asynchronous HTTP transport for the catalog backend.

:class:`AsyncClient` wraps :class:`httpx.AsyncClient` and is what every
fetcher and action in :mod:`shelfcache.services` ultimately calls. It

* joins request paths onto the configured ``base_url``;
* sends JSON (``Content-Type: application/json``);
* injects ``Authorization: Bearer <token>`` when the
  :class:`~shelfcache.auth.SessionStore` holds a valid session;
* retries 5xx responses and connection failures with exponential backoff
  (``max_retries`` in :class:`~shelfcache.models.RequestConfig`, off by
  default). Retrying lives here, inside the fetcher, never in the cache;
* maps error responses onto the :mod:`shelfcache.exceptions` hierarchy using
  the body's ``message`` field.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from shelfcache.auth.session_store import SessionStore
from shelfcache.client.response import extract_response_data
from shelfcache.exceptions import (
    AuthError,
    ConfigError,
    ConnectionError_,
    NotFoundError,
    ServerError,
)
from shelfcache.models import RequestConfig

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Failed to fetch data"


class AsyncClient:
    """Asynchronous HTTP client for the catalog API.

    Must be used as an async context manager.

    Args:
        config: Base URL, timeout, SSL verification, and retry settings.
        session_store: Source of the bearer token. When ``None``, requests
            are sent unauthenticated.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.

    Example::

        async with AsyncClient(config, session_store=SessionStore()) as client:
            books = await client.get_json("book")
    """

    def __init__(
        self,
        config: RequestConfig,
        session_store: Optional[SessionStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._session_store = session_store
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> AsyncClient:
        if not self._config.base_url:
            raise ConfigError(
                "No backend URL configured. Set request.base_url or SHELFCACHE_BASE_URL."
            )
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        """Send one catalog request and return the successful response.

        Raises:
            AuthError: 401 or 403.
            NotFoundError: 404.
            ServerError: Any other status of 400 or more.
            ConnectionError_: The backend stayed unreachable through every retry.
        """
        if self._client is None:
            raise RuntimeError("AsyncClient used outside 'async with'")
        kwargs: dict[str, Any] = {"headers": self._headers()}
        if params:
            kwargs["params"] = params
        if json_body is not None:
            kwargs["json"] = json_body
        logger.debug("%s %s", method, path)
        response = await self._send(method, path, kwargs)
        _raise_for_status(response)
        return response

    async def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return extract_response_data(await self.request("GET", path, params=params))

    async def post_json(self, path: str, body: Any) -> Any:
        return extract_response_data(await self.request("POST", path, json_body=body))

    async def put_json(self, path: str, body: Any) -> Any:
        return extract_response_data(await self.request("PUT", path, json_body=body))

    async def delete(self, path: str) -> Any:
        return extract_response_data(await self.request("DELETE", path))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self._session_store.token() if self._session_store is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(self, method: str, path: str, kwargs: dict[str, Any]) -> httpx.Response:
        """Issue the request, backing off 1 s, 2 s, 4 s... between attempts.

        Only 5xx responses and transport failures are retried.
        """
        assert self._client is not None
        retries = self._config.max_retries
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, **kwargs)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt >= retries:
                    raise ConnectionError_(
                        f"Connection failed after {attempt + 1} attempts: {exc}"
                    ) from exc
                reason = f"connection error ({exc})"
            else:
                if response.status_code < 500 or attempt >= retries:
                    return response
                reason = f"server error {response.status_code}"
            delay = 2**attempt
            attempt += 1
            logger.debug("%s %s: %s, retry %d/%d in %ds", method, path, reason, attempt, retries, delay)
            await asyncio.sleep(delay)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return DEFAULT_ERROR_MESSAGE
    if isinstance(body, dict):
        for field in ("message", "error", "detail"):
            if body.get(field):
                return str(body[field])
    return DEFAULT_ERROR_MESSAGE


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"HTTP {status}: {_error_message(response)}"
    if status in (401, 403):
        raise AuthError(message)
    if status == 404:
        raise NotFoundError(message)
    raise ServerError(message)
