"""Retry handler with linear backoff for transient failures.

Transient failures are error responses other than 429 and network-level
errors raised by the HTTP client. Each retry waits `attempt * base_delay`
seconds, so the first retry is immediate and later ones back off linearly.
Rate limiting is handled separately by RateLimitPolicy and never consumes
this handler's retry budget.

Example usage:
    retry_handler = RetryHandler(RetryConfig(max_retries=5, base_delay=0.5))

    response = await retry_handler.execute(
        lambda: client.request("GET", url),
        operation_name="GET /@user/repl.zip",
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from replit_export.downloaders.base.protocol import ExportError
from replit_export.utils.http_client import HTTPClientError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 5)
        base_delay: Delay step in seconds, multiplied by the attempt index
        max_delay: Upper bound for a single delay in seconds
    """

    max_retries: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")


class RetryableError(ExportError):
    """Error response that should be retried.

    Raised when an HTTP response falls outside the accepted status range
    for reasons other than rate limiting.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class RetryHandler:
    """Bounded retry of transient failures with linear backoff.

    Example:
        handler = RetryHandler(RetryConfig(max_retries=5))

        result = await handler.execute(fetch_archive, operation_name="fetch")
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the retry following `attempt` (0-indexed)."""
        return min(attempt * self.config.base_delay, self.config.max_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "operation",
    ) -> T:
        """Execute an async operation, retrying transient failures.

        Args:
            operation: Async callable to execute; re-invoked on each attempt
            operation_name: Name for logging purposes

        Returns:
            The result of the operation if successful

        Raises:
            RetryableError, HTTPClientError: The last failure once all
                retry attempts are spent
            Exception: Any non-retryable exception from the operation
        """
        last_error: Exception | None = None

        for attempt in range(self.config.max_retries + 1):
            try:
                result = await operation()
                if attempt > 0:
                    logger.info(
                        "%s succeeded after %d attempts", operation_name, attempt + 1
                    )
                return result

            except (RetryableError, HTTPClientError) as e:
                last_error = e
                if attempt >= self.config.max_retries:
                    break

                delay = self.calculate_delay(attempt)
                status = getattr(e, "status_code", None)
                logger.warning(
                    "Retrying %s (%d/%d)%s in %.1fs: %s",
                    operation_name,
                    attempt + 1,
                    self.config.max_retries,
                    f", received status code {status}" if status else "",
                    delay,
                    e,
                )
                await asyncio.sleep(delay)

        # Budget exhausted: the last failure propagates unmodified.
        logger.error(
            "%s failed after %d attempts: %s",
            operation_name,
            self.config.max_retries + 1,
            last_error,
        )
        assert last_error is not None
        raise last_error
