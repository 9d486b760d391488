"""Configuration management."""

from replit_export.config.settings import (
    ExportSettings,
    get_settings,
    split_filters,
)

__all__ = [
    "ExportSettings",
    "get_settings",
    "split_filters",
]
