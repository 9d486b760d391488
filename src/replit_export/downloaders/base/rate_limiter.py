"""Rate-limit backoff honoring server retry hints.

When Replit answers 429 the request is re-issued unchanged after the delay
given by its Retry-After header. Hints that are missing or longer than
`max_retry_after` are replaced by `default_delay`.

Unlike RetryHandler this policy is unbounded by default: a rate-limited
request keeps waiting until the server lets it through. A finite
`max_attempts` can be configured when that is not acceptable.

Example usage:
    policy = RateLimitPolicy()

    response = await policy.execute(
        do_request,
        operation_name="POST /graphql",
    )
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, TypeVar

from replit_export.downloaders.base.protocol import RateLimitError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Longest server-provided wait that is honored, in seconds
MAX_RETRY_AFTER = 60.0

# Wait used when Retry-After is absent or exceeds MAX_RETRY_AFTER, in seconds
DEFAULT_RETRY_DELAY = 15.0


class RateLimitPolicy:
    """Waits out 429 responses and re-issues the identical request.

    Attributes:
        max_retry_after: Longest Retry-After value honored as-is
        default_delay: Substitute delay for missing or excessive hints
        max_attempts: Total attempts allowed, None for unbounded
    """

    def __init__(
        self,
        max_retry_after: float = MAX_RETRY_AFTER,
        default_delay: float = DEFAULT_RETRY_DELAY,
        max_attempts: int | None = None,
    ) -> None:
        if max_retry_after <= 0:
            raise ValueError("max_retry_after must be positive")
        if default_delay < 0:
            raise ValueError("default_delay must be non-negative")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_retry_after = max_retry_after
        self.default_delay = default_delay
        self.max_attempts = max_attempts

    @property
    def is_unbounded(self) -> bool:
        return self.max_attempts is None

    def delay_for(self, retry_after: float | None) -> float:
        """Return the wait in seconds for a server-provided hint."""
        if (
            retry_after is None
            or math.isnan(retry_after)
            or retry_after < 0
            or retry_after > self.max_retry_after
        ):
            return self.default_delay
        return retry_after

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "operation",
    ) -> T:
        """Run `operation`, waiting and re-running it while it is rate limited.

        Raises:
            RateLimitError: Only when max_attempts is set and exhausted
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except RateLimitError as e:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise

                delay = self.delay_for(e.retry_after)
                logger.warning(
                    "%s ratelimited, automatically retrying in %g seconds",
                    operation_name,
                    delay,
                )
                await asyncio.sleep(delay)
