"""Run summary for an export.

The tracker aggregates the outcome of every page the orchestrator loop
processes: how many Repls were exported, which ones failed and at which
stage. It is purely in-memory; resumption is handled by StateStore.

Example usage:
    tracker = ProgressTracker(on_progress=lambda event: print(event.stats))

    result = await exporter.download_batch(repls, sinks)
    failed_processing = await process_batch(archives)
    tracker.record_page(result, failed_processing)

    print(tracker.summary())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from replit_export.downloaders.base.protocol import BatchResult

logger = logging.getLogger(__name__)


class FailureStage(Enum):
    """Pipeline stage at which a Repl failed."""

    DOWNLOAD = "download"
    PROCESSING = "processing"


@dataclass
class ProgressStats:
    """Aggregated progress statistics.

    Attributes:
        pages: Pages completed
        exported: Repls downloaded and processed successfully
        failed: Repl id -> stage at which it failed
        started_at: When tracking started
        last_update: Last time a page was recorded
    """

    pages: int = 0
    exported: int = 0
    failed: dict[str, FailureStage] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_update: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def processed(self) -> int:
        """Total Repls seen (exported + failed)."""
        return self.exported + self.failed_count

    @property
    def success_rate(self) -> float:
        """Success rate as percentage (0-100)."""
        if self.processed == 0:
            return 0.0
        return (self.exported / self.processed) * 100

    @property
    def elapsed_seconds(self) -> float:
        return (self.last_update - self.started_at).total_seconds()


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Event emitted after each recorded page.

    Attributes:
        page: 1-indexed page number
        exported: Repls exported from this page
        failed: Repl ids that failed on this page
        stats: Aggregated statistics so far
        timestamp: When the event occurred
    """

    page: int
    exported: int
    failed: tuple[str, ...]
    stats: ProgressStats
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class ProgressCallback(Protocol):
    """Protocol for progress callback functions."""

    def __call__(self, event: ProgressEvent) -> None: ...


class ProgressTracker:
    """Accumulates per-page results into a run summary."""

    def __init__(
        self,
        *,
        on_progress: ProgressCallback | Callable[[ProgressEvent], None] | None = None,
    ) -> None:
        self._on_progress = on_progress
        self._stats = ProgressStats()

    @property
    def stats(self) -> ProgressStats:
        return self._stats

    @property
    def failed_ids(self) -> list[str]:
        return list(self._stats.failed)

    def record_page(
        self,
        batch: BatchResult,
        processing_failures: Iterable[str] = (),
    ) -> ProgressEvent:
        """Record one page's download outcomes and processing failures."""
        page_failed: list[str] = []
        for repl_id in batch.failed:
            self._stats.failed[repl_id] = FailureStage.DOWNLOAD
            page_failed.append(repl_id)
        for repl_id in processing_failures:
            if repl_id not in self._stats.failed:
                self._stats.failed[repl_id] = FailureStage.PROCESSING
                page_failed.append(repl_id)

        exported = len(batch) - len(page_failed)
        self._stats.exported += exported
        self._stats.pages += 1
        self._stats.last_update = datetime.now(UTC)

        event = ProgressEvent(
            page=self._stats.pages,
            exported=exported,
            failed=tuple(page_failed),
            stats=self._stats,
        )
        if page_failed:
            logger.warning(
                "Page %d: %d repl(s) failed: %s",
                event.page,
                len(page_failed),
                ", ".join(page_failed),
            )
        if self._on_progress is not None:
            self._on_progress(event)
        return event

    def summary(self) -> str:
        """Human-readable summary of the run."""
        stats = self._stats
        lines = [
            f"Downloaded {stats.exported} repls in {stats.pages} page(s) "
            f"({stats.elapsed_seconds:.0f}s)"
        ]
        if stats.failed:
            lines.append(f"{stats.failed_count} repl(s) failed:")
            for repl_id, stage in stats.failed.items():
                lines.append(f"  - {repl_id} ({stage.value})")
        return "\n".join(lines)
