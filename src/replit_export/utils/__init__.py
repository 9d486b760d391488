"""Utility functions and helpers."""

from replit_export.utils.archive_storage import (
    DEFAULT_FILTERS,
    ReplArchive,
    extract_zip,
    process_batch,
    redact_environment,
    remove_matches,
)
from replit_export.utils.http_client import (
    ConnectionError,
    GraphQLResponse,
    HTTPClient,
    HTTPClientConfig,
    HTTPClientError,
    HTTPResponse,
    TimeoutError,
)

__all__ = [
    # Archive Storage
    "DEFAULT_FILTERS",
    "ReplArchive",
    "extract_zip",
    "process_batch",
    "redact_environment",
    "remove_matches",
    # HTTP Client
    "ConnectionError",
    "GraphQLResponse",
    "HTTPClient",
    "HTTPClientConfig",
    "HTTPClientError",
    "HTTPResponse",
    "TimeoutError",
]
