"""Run state persistence and progress tracking."""

from replit_export.downloaders.progress.state import (
    DEFAULT_SAVE_FILE,
    ExportState,
    StateStore,
)
from replit_export.downloaders.progress.tracker import (
    FailureStage,
    ProgressEvent,
    ProgressStats,
    ProgressTracker,
)

__all__ = [
    "DEFAULT_SAVE_FILE",
    "ExportState",
    "FailureStage",
    "ProgressEvent",
    "ProgressStats",
    "ProgressTracker",
    "StateStore",
]
