"""Authenticated HTTP client for the Replit web API.

This module provides the transport used by every downloader. It wraps a
single aiohttp session that carries the fixed identity headers Replit
expects from its own web client plus the `connect.sid` session cookie.

HTTP statuses are never raised as exceptions here: callers receive an
HTTPResponse and classify it themselves. Only network-level failures
(connection refused, timeouts) raise HTTPClientError.

Example usage:
    config = HTTPClientConfig(session_cookie="s%3A...")
    async with HTTPClient(config) as client:
        response = await client.graphql("CurrentUser", {}, CURRENT_USER_QUERY)
        body = response.json()

        async with client.stream("GET", "/@user/my-repl.zip") as download:
            async for chunk in download.content.iter_chunked(65536):
                ...
"""

from __future__ import annotations

import builtins
import json as jsonlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://replit.com"
DEFAULT_USER_AGENT = (
    "Replit-Exporter (+https://github.com/hackermondev/replit-exporter)"
)
SESSION_COOKIE_NAME = "connect.sid"
GRAPHQL_PATH = "/graphql"


@dataclass(frozen=True, slots=True)
class HTTPClientConfig:
    """Configuration for the HTTP client.

    Attributes:
        base_url: Origin every relative path is resolved against
        user_agent: User-Agent header value
        session_cookie: Value of the connect.sid cookie, None for anonymous
        timeout: Socket read timeout in seconds
        connect_timeout: Connection timeout in seconds
        total_timeout: Total timeout of buffered requests in seconds; streams
            are bounded only by connect and socket read timeouts
        max_connections: Maximum number of connections in the pool
        max_connections_per_host: Maximum connections per host
        verify_ssl: Whether to verify SSL certificates
    """

    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    session_cookie: str | None = None
    timeout: float = 60.0
    connect_timeout: float = 10.0
    total_timeout: float = 300.0
    max_connections: int = 100
    max_connections_per_host: int = 20
    verify_ssl: bool = True

    @property
    def default_headers(self) -> dict[str, str]:
        """Get default headers for all requests.

        The Replit API rejects requests that do not look like they come
        from its own web client, hence X-Requested-With and Referer.
        """
        headers = {
            "User-Agent": self.user_agent,
            "X-Requested-With": "XMLHttpRequest",
            "Referer": self.base_url,
        }
        if self.session_cookie:
            headers["Cookie"] = f"{SESSION_COOKIE_NAME}={self.session_cookie}"
        return headers


@dataclass
class HTTPResponse:
    """Wrapper for HTTP response data.

    Attributes:
        status: HTTP status code
        headers: Response headers
        content: Raw response content as bytes
        url: Final URL after redirects
    """

    status: int
    headers: dict[str, str]
    content: bytes
    url: str

    @classmethod
    async def from_aiohttp_response(
        cls, response: aiohttp.ClientResponse
    ) -> HTTPResponse:
        """Create HTTPResponse from aiohttp response, reading the whole body."""
        content = await response.read()
        return cls(
            status=response.status,
            headers=dict(response.headers),
            content=content,
            url=str(response.url),
        )

    def json(self) -> Any:
        """Parse response content as JSON.

        Raises:
            ValueError: If content is not valid JSON
        """
        try:
            return jsonlib.loads(self.content.decode("utf-8"))
        except (jsonlib.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid JSON response: {e}") from e

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def is_success(self) -> bool:
        """Check if response indicates success (2xx status)."""
        return 200 <= self.status < 300

    @property
    def is_redirect(self) -> bool:
        """Check if response is a redirect (3xx status)."""
        return 300 <= self.status < 400

    @property
    def is_rate_limited(self) -> bool:
        """Check if response indicates rate limiting."""
        return self.status == 429

    @property
    def retry_after(self) -> float | None:
        """Seconds from the Retry-After header, or None if absent/invalid."""
        return parse_retry_after(self.header("Retry-After"))

    @property
    def location(self) -> str | None:
        """Redirect target from the Location header."""
        return self.header("Location")


class GraphQLResponse(BaseModel):
    """Envelope returned by the GraphQL endpoint."""

    model_config = ConfigDict(extra="ignore")

    errors: list[dict[str, Any]] | None = None
    data: dict[str, Any] | None = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds.

    HTTP-date values are not used by Replit and are treated as absent.
    """
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HTTPClientError(Exception):
    """Base exception for HTTP client errors."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.cause = cause


class ConnectionError(HTTPClientError):
    """Raised when connection to server fails."""

    pass


class TimeoutError(HTTPClientError):
    """Raised when request times out."""

    pass


class HTTPClient:
    """Async HTTP client bound to one Replit session.

    It should be used as an async context manager to ensure proper
    resource cleanup.

    Example:
        async with HTTPClient(HTTPClientConfig(session_cookie=sid)) as client:
            response = await client.request("GET", "/replid/abc", allow_redirects=False)
    """

    def __init__(self, config: HTTPClientConfig | None = None) -> None:
        self.config = config or HTTPClientConfig()
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HTTPClient:
        await self._create_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _create_session(self) -> None:
        """Create the aiohttp session with connection pooling."""
        if self._session is not None:
            return

        connector = aiohttp.TCPConnector(
            limit=self.config.max_connections,
            limit_per_host=self.config.max_connections_per_host,
            ssl=self.config.verify_ssl,
        )
        timeout = aiohttp.ClientTimeout(
            total=self.config.total_timeout,
            connect=self.config.connect_timeout,
            sock_read=self.config.timeout,
        )
        # The session cookie travels in the fixed headers, so the jar is a
        # dummy: a cookie rotated by the server must not leak between calls.
        self._session = aiohttp.ClientSession(
            connector=connector,
            cookie_jar=aiohttp.DummyCookieJar(),
            timeout=timeout,
            headers=self.config.default_headers,
        )
        logger.debug("Created HTTP session for %s", self.config.base_url)

    async def close(self) -> None:
        """Close the session and release resources."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.debug("Closed HTTP session")

    @property
    def is_open(self) -> bool:
        return self._session is not None and not self._session.closed

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self._create_session()
        if self._session is None:
            raise RuntimeError("HTTP session not initialized")
        return self._session

    def resolve_url(self, path: str) -> str:
        """Resolve a path against base_url; absolute URLs pass through."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    @staticmethod
    def _build_kwargs(
        *,
        headers: Mapping[str, str] | None,
        params: Mapping[str, str] | None,
        json: Any,
        allow_redirects: bool,
        timeout: float | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"allow_redirects": allow_redirects}
        if headers:
            kwargs["headers"] = dict(headers)
        if params:
            kwargs["params"] = dict(params)
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)
        return kwargs

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        allow_redirects: bool = True,
        timeout: float | None = None,
    ) -> HTTPResponse:
        """Perform an HTTP request and read the full body.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path relative to base_url, or an absolute URL
            headers: Additional headers to send
            params: Query parameters to append to URL
            json: JSON data to send in body
            allow_redirects: Follow 3xx responses
            timeout: Override default total timeout for this request

        Returns:
            HTTPResponse for any HTTP status

        Raises:
            ConnectionError: If connection fails
            TimeoutError: If request times out
            HTTPClientError: For other transport errors
        """
        session = await self._ensure_session()
        url = self.resolve_url(path)
        kwargs = self._build_kwargs(
            headers=headers,
            params=params,
            json=json,
            allow_redirects=allow_redirects,
            timeout=timeout,
        )

        logger.debug("HTTP %s %s", method, url)
        try:
            async with session.request(method, url, **kwargs) as response:
                http_response = await HTTPResponse.from_aiohttp_response(response)
                logger.debug("HTTP %s %s -> %d", method, url, http_response.status)
                return http_response
        except aiohttp.ClientError as e:
            raise _translate_client_error(e, url) from e
        except builtins.TimeoutError as e:
            logger.warning("Timeout for %s: %s", url, e)
            raise TimeoutError(f"Request timed out for {url}", url=url, cause=e) from e

    async def graphql(
        self,
        operation_name: str,
        variables: Mapping[str, Any],
        query: str,
    ) -> HTTPResponse:
        """POST a named GraphQL operation to the fixed endpoint."""
        return await self.request(
            "POST",
            GRAPHQL_PATH,
            json={
                "operationName": operation_name,
                "variables": dict(variables),
                "query": query,
            },
        )

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a request whose body is consumed incrementally.

        The raw aiohttp response is yielded before its body is read; it is
        released when the context exits. Unless `timeout` is given the body
        has no overall deadline: only the connect and per-read timeouts
        apply, so a large archive on a slow link still completes.
        """
        session = await self._ensure_session()
        url = self.resolve_url(path)
        kwargs = self._build_kwargs(
            headers=headers,
            params=None,
            json=None,
            allow_redirects=True,
            timeout=None,
        )
        kwargs["timeout"] = aiohttp.ClientTimeout(
            total=timeout,
            connect=self.config.connect_timeout,
            sock_read=self.config.timeout,
        )

        logger.debug("HTTP %s %s (stream)", method, url)
        try:
            async with session.request(method, url, **kwargs) as response:
                logger.debug("HTTP %s %s -> %d", method, url, response.status)
                yield response
        except aiohttp.ClientError as e:
            raise _translate_client_error(e, url) from e
        except builtins.TimeoutError as e:
            logger.warning("Timeout for %s: %s", url, e)
            raise TimeoutError(f"Request timed out for {url}", url=url, cause=e) from e


def _translate_client_error(error: aiohttp.ClientError, url: str) -> HTTPClientError:
    if isinstance(error, aiohttp.ClientConnectorError):
        logger.warning("Connection error for %s: %s", url, error)
        return ConnectionError(f"Failed to connect to {url}", url=url, cause=error)
    if isinstance(error, aiohttp.ServerTimeoutError):
        logger.warning("Timeout for %s: %s", url, error)
        return TimeoutError(f"Request timed out for {url}", url=url, cause=error)
    logger.warning("HTTP error for %s: %s", url, error)
    return HTTPClientError(f"HTTP error for {url}: {error}", url=url, cause=error)
