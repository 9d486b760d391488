"""Exporter configuration using pydantic-settings.

Settings are read from environment variables prefixed with REPLIT_EXPORT_
and from a `.env` file in the working directory. Command-line flags take
precedence over both.

Example:
    export REPLIT_EXPORT_AUTH="s%3A..."
    export REPLIT_EXPORT_CONCURRENT=10
    export REPLIT_EXPORT_FILTERS="node_modules/,.cargo/"
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from replit_export.downloaders.base.base_downloader import DownloaderConfig
from replit_export.downloaders.base.rate_limiter import (
    DEFAULT_RETRY_DELAY,
    MAX_RETRY_AFTER,
)
from replit_export.downloaders.progress.state import DEFAULT_SAVE_FILE
from replit_export.utils.archive_storage import DEFAULT_FILTERS
from replit_export.utils.http_client import DEFAULT_BASE_URL, DEFAULT_USER_AGENT


def split_filters(value: Any) -> list[str]:
    """Split a comma-separated filter list, dropping blanks."""
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part) for part in value]


class ExportSettings(BaseSettings):
    """Configuration for an export run.

    All settings can be overridden via environment variables.
    The prefix REPLIT_EXPORT_ is used for all settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="REPLIT_EXPORT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Session
    auth: str | None = None  # connect.sid cookie value
    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT

    # Output
    output: Path = Path("repls")
    save_file: Path = Path(DEFAULT_SAVE_FILE)
    filters: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_FILTERS)
    )

    # Paging
    concurrent: int = Field(default=15, ge=1)
    max_repls: int | None = Field(default=None, ge=1)

    # Resilience
    http_timeout: float = Field(default=300.0, gt=0)
    max_retries: int = Field(default=5, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    max_retry_after: float = Field(default=MAX_RETRY_AFTER, gt=0)
    default_retry_after: float = Field(default=DEFAULT_RETRY_DELAY, ge=0)

    @field_validator("filters", mode="before")
    @classmethod
    def _split_filters(cls, value: Any) -> list[str]:
        return split_filters(value)

    def downloader_config(self) -> DownloaderConfig:
        """Build the downloader configuration shared by catalog and exporter."""
        return DownloaderConfig(
            session_cookie=self.auth,
            base_url=self.base_url,
            user_agent=self.user_agent,
            max_retries=self.max_retries,
            retry_base_delay=self.retry_base_delay,
            max_retry_after=self.max_retry_after,
            default_retry_after=self.default_retry_after,
            http_timeout=self.http_timeout,
        )


@lru_cache
def get_settings() -> ExportSettings:
    """Get cached settings instance.

    Returns:
        ExportSettings loaded from environment.
    """
    return ExportSettings()
