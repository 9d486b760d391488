"""Base downloader components.

This module provides the foundational components for all downloaders:
- Error taxonomy and TransferOutcome/BatchResult
- RateLimitPolicy honoring Retry-After on 429
- RetryHandler with linear backoff
- BaseDownloader composing both around the HTTP client
"""

from replit_export.downloaders.base.base_downloader import (
    BaseDownloader,
    DownloaderConfig,
)
from replit_export.downloaders.base.protocol import (
    ApiError,
    AuthenticationError,
    BatchResult,
    ExportError,
    ExtractionError,
    InvalidContentTypeError,
    RateLimitError,
    SinkClosedError,
    StateCorruptionError,
    TransferOutcome,
    TransferStatus,
)
from replit_export.downloaders.base.rate_limiter import RateLimitPolicy
from replit_export.downloaders.base.retry_handler import (
    RetryableError,
    RetryConfig,
    RetryHandler,
)

__all__ = [
    "ApiError",
    "AuthenticationError",
    "BaseDownloader",
    "BatchResult",
    "DownloaderConfig",
    "ExportError",
    "ExtractionError",
    "InvalidContentTypeError",
    "RateLimitError",
    "RateLimitPolicy",
    "RetryableError",
    "RetryConfig",
    "RetryHandler",
    "SinkClosedError",
    "StateCorruptionError",
    "TransferOutcome",
    "TransferStatus",
]
