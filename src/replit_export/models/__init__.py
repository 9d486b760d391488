"""Data models for Replit API records."""

from replit_export.models.repl import (
    CurrentUser,
    Multiplayer,
    PageInfo,
    Repl,
    ReplConfig,
    ReplDeployment,
    ReplDomain,
    ReplLanguage,
    ReplOwner,
    ReplPage,
    ReplRelease,
    ReplSource,
)

__all__ = [
    "CurrentUser",
    "Multiplayer",
    "PageInfo",
    "Repl",
    "ReplConfig",
    "ReplDeployment",
    "ReplDomain",
    "ReplLanguage",
    "ReplOwner",
    "ReplPage",
    "ReplRelease",
    "ReplSource",
]
