"""Base class composing the transport with the resilience policies.

Every call a downloader makes goes through `_call`, which stacks the two
policies around one attempt:

    retry_handler.execute(            # bounded, transient failures
        rate_limit.execute(           # unbounded, 429 only
            attempt()))               # one HTTP request, classified

Rate-limit waits therefore happen inside a single retry attempt and never
consume the retry budget.

Example usage:
    class ReplCatalog(BaseDownloader):
        async def fetch_identity(self) -> int:
            response = await self._graphql("CurrentUser", {}, CURRENT_USER_QUERY)
            ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from replit_export.downloaders.base.protocol import RateLimitError
from replit_export.downloaders.base.rate_limiter import (
    DEFAULT_RETRY_DELAY,
    MAX_RETRY_AFTER,
    RateLimitPolicy,
)
from replit_export.downloaders.base.retry_handler import (
    RetryableError,
    RetryConfig,
    RetryHandler,
)
from replit_export.utils.http_client import (
    DEFAULT_BASE_URL,
    DEFAULT_USER_AGENT,
    HTTPClient,
    HTTPClientConfig,
    HTTPResponse,
    parse_retry_after,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Mapping

    import aiohttp

logger = logging.getLogger(__name__)

# GraphQL error envelopes arrive with 4xx statuses and are classified by
# the catalog, not retried.
GRAPHQL_ACCEPTED_STATUSES = range(200, 500)
SUCCESS_STATUSES = range(200, 300)


@dataclass
class DownloaderConfig:
    """Configuration for base downloader.

    Attributes:
        session_cookie: connect.sid value used to authenticate
        base_url: Replit origin
        user_agent: User-Agent sent with every request
        max_retries: Maximum transient-failure retries per call
        retry_base_delay: Linear backoff step in seconds
        max_retry_after: Longest Retry-After honored in seconds
        default_retry_after: Wait used for missing or excessive hints
        rate_limit_max_attempts: None keeps rate-limit waits unbounded
        http_timeout: Total timeout per buffered request in seconds; archive
            streams are not bounded by it
    """

    session_cookie: str | None = None
    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    max_retries: int = 5
    retry_base_delay: float = 0.5
    max_retry_after: float = MAX_RETRY_AFTER
    default_retry_after: float = DEFAULT_RETRY_DELAY
    rate_limit_max_attempts: int | None = None
    http_timeout: float = 300.0

    def http_client_config(self) -> HTTPClientConfig:
        return HTTPClientConfig(
            base_url=self.base_url,
            user_agent=self.user_agent,
            session_cookie=self.session_cookie,
            total_timeout=self.http_timeout,
        )


def classify_status(
    status: int,
    accepted: range,
    *,
    url: str,
    retry_after: float | None = None,
    repl_id: str | None = None,
) -> None:
    """Raise the resilience error matching an HTTP status, if any.

    Raises:
        RateLimitError: For 429, whatever the accepted range
        RetryableError: For any other status outside `accepted`
    """
    if status == 429:
        raise RateLimitError(
            f"Rate limited: {url}", retry_after=retry_after, repl_id=repl_id
        )
    if status not in accepted:
        raise RetryableError(
            f"Unexpected status {status}: {url}", status_code=status, repl_id=repl_id
        )


class BaseDownloader:
    """Shared plumbing for the catalog client and the archive exporter.

    Several downloaders may share one HTTPClient; only the instance that
    created its client closes it.
    """

    def __init__(
        self,
        config: DownloaderConfig,
        *,
        http_client: HTTPClient | None = None,
        rate_limit: RateLimitPolicy | None = None,
        retry_handler: RetryHandler | None = None,
    ) -> None:
        self.config = config

        self._http_client = http_client
        self._owns_http_client = http_client is None

        self._rate_limit = rate_limit or RateLimitPolicy(
            max_retry_after=config.max_retry_after,
            default_delay=config.default_retry_after,
            max_attempts=config.rate_limit_max_attempts,
        )
        self._retry_handler = retry_handler or RetryHandler(
            RetryConfig(
                max_retries=config.max_retries,
                base_delay=config.retry_base_delay,
            )
        )

        logger.debug(
            "Initialized %s with max_retries=%d",
            type(self).__name__,
            config.max_retries,
        )

    async def __aenter__(self) -> BaseDownloader:
        if self._http_client is None:
            self._http_client = HTTPClient(self.config.http_client_config())
            await self._http_client._create_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.close()
            self._http_client = None

    @property
    def http_client(self) -> HTTPClient:
        """The HTTP client in use.

        Raises:
            RuntimeError: If the downloader is not entered
        """
        if self._http_client is None:
            raise RuntimeError(
                f"{type(self).__name__}: HTTP client not initialized. "
                "Use 'async with downloader:' context manager."
            )
        return self._http_client

    async def _call(
        self,
        attempt: Callable[[], Awaitable[Any]],
        *,
        operation_name: str,
    ) -> Any:
        """Run one classified request under both resilience policies."""
        return await self._retry_handler.execute(
            lambda: self._rate_limit.execute(attempt, operation_name=operation_name),
            operation_name=operation_name,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        accepted: range = SUCCESS_STATUSES,
        allow_redirects: bool = True,
        repl_id: str | None = None,
    ) -> HTTPResponse:
        """Perform a resilient request and read the whole body."""
        client = self.http_client

        async def attempt() -> HTTPResponse:
            response = await client.request(
                method, path, allow_redirects=allow_redirects
            )
            classify_status(
                response.status,
                accepted,
                url=response.url,
                retry_after=response.retry_after,
                repl_id=repl_id,
            )
            return response

        return await self._call(attempt, operation_name=f"{method} {path}")

    async def _graphql(
        self,
        operation_name: str,
        variables: Mapping[str, Any],
        query: str,
    ) -> HTTPResponse:
        """Perform a resilient GraphQL call.

        4xx responses other than 429 are returned, not raised, so the caller
        can read the error envelope.
        """
        client = self.http_client

        async def attempt() -> HTTPResponse:
            response = await client.graphql(operation_name, variables, query)
            classify_status(
                response.status,
                GRAPHQL_ACCEPTED_STATUSES,
                url=response.url,
                retry_after=response.retry_after,
            )
            return response

        return await self._call(attempt, operation_name=f"graphql {operation_name}")

    async def _stream(
        self,
        path: str,
        consume: Callable[[aiohttp.ClientResponse], Awaitable[Any]],
        *,
        repl_id: str | None = None,
    ) -> Any:
        """Perform a resilient streamed GET.

        The status is checked before `consume` receives the open response,
        so only the connection phase is retried. Failures raised by
        `consume` itself propagate unless they are transient.
        """
        client = self.http_client

        async def attempt() -> Any:
            async with client.stream("GET", path) as response:
                classify_status(
                    response.status,
                    SUCCESS_STATUSES,
                    url=str(response.url),
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                    repl_id=repl_id,
                )
                return await consume(response)

        return await self._call(attempt, operation_name=f"GET {path}")


async def iter_body(
    response: aiohttp.ClientResponse, chunk_size: int = 64 * 1024
) -> AsyncIterator[bytes]:
    """Yield a streamed response body in chunks."""
    async for chunk in response.content.iter_chunked(chunk_size):
        yield chunk
