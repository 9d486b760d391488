"""Export command: the resumable page loop.

One page at a time, strictly sequential:

    fetch page -> download archives (concurrent) -> post-process (concurrent)
    -> save state -> next page

The save file is only written once a page is fully processed, so it is
the resumption checkpoint: a crash mid-page re-downloads that page on the
next run. Item failures are reported in the summary and never stop the
loop; only systemic errors (bad credential, listing errors) end the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from replit_export.downloaders.base.protocol import AuthenticationError, ExportError
from replit_export.downloaders.catalog import ReplCatalog
from replit_export.downloaders.exporter import ReplExporter
from replit_export.downloaders.progress.state import StateStore
from replit_export.downloaders.progress.tracker import ProgressTracker
from replit_export.utils.archive_storage import ReplArchive, process_batch
from replit_export.utils.http_client import HTTPClient

if TYPE_CHECKING:
    from collections.abc import Callable

    from replit_export.config.settings import ExportSettings
    from replit_export.downloaders.progress.tracker import ProgressEvent

logger = logging.getLogger(__name__)

RESTART_HINT = "Unknown error occurred, simply restart the CLI to resume download"
AUTH_HINT = (
    "Replit rejected the session cookie. Copy a fresh connect.sid cookie "
    "from a logged-in browser and pass it with --auth."
)


def next_page_size(concurrent: int, exported: int, max_repls: int | None) -> int:
    """Size of the next page, truncated so the run stops exactly at the cap.

    Returns:
        0 once the cap is reached
    """
    if max_repls is None:
        return concurrent
    return max(0, min(concurrent, max_repls - exported))


async def export_repls(
    settings: ExportSettings,
    client: HTTPClient,
    tracker: ProgressTracker,
) -> int:
    """Run the page loop over an open HTTP client.

    Returns:
        Number of Repls listed and attempted

    Raises:
        AuthenticationError: If the session cookie is invalid
        ApiError: If the listing call fails
    """
    store = StateStore(settings.save_file)
    output = settings.output.resolve()
    output.mkdir(parents=True, exist_ok=True)

    config = settings.downloader_config()
    catalog = ReplCatalog(config, state=store.load(), http_client=client)
    exporter = ReplExporter(config, http_client=client)

    identity = await catalog.fetch_identity()
    state = catalog.reconcile_state(identity)
    if not state.has_next_page:
        logger.info(
            "Nothing left to export; delete %s to export again", settings.save_file
        )
        return 0

    count = 0
    while True:
        page_size = next_page_size(settings.concurrent, count, settings.max_repls)
        if page_size == 0:
            break

        page = await catalog.fetch_next_page(page_size)
        logger.info("Downloading %d repls (%d finished).", len(page), count)
        if page.is_empty:
            break
        count += len(page)

        archives = [ReplArchive(repl, output, settings.filters) for repl in page.items]
        batch = await exporter.download_batch(
            page.items, [archive.open_sink() for archive in archives]
        )

        failed = set(batch.failed)
        for archive in archives:
            if archive.repl.id in failed:
                archive.zip_path.unlink(missing_ok=True)
        processing_failures = await process_batch(
            [archive for archive in archives if archive.repl.id not in failed]
        )

        store.save(catalog.state)
        tracker.record_page(batch, processing_failures)

        if not catalog.state.has_next_page:
            break

    return count


async def _run_export_async(
    settings: ExportSettings,
    *,
    http_client: HTTPClient | None = None,
    on_progress: Callable[[ProgressEvent], None] | None = None,
) -> int:
    """Run the export and map failures to an exit code."""
    tracker = ProgressTracker(on_progress=on_progress)
    client = http_client or HTTPClient(settings.downloader_config().http_client_config())

    try:
        await export_repls(settings, client, tracker)
    except AuthenticationError as e:
        logger.error("%s", e)
        print(AUTH_HINT)
        return 1
    except ExportError as e:
        logger.error("Export failed: %s", e)
        print(RESTART_HINT)
        return 1
    except Exception:
        logger.exception("Export failed")
        print(RESTART_HINT)
        return 1
    finally:
        if http_client is None:
            await client.close()
        logger.info("%s", tracker.summary())

    return 0


def run_export(settings: ExportSettings) -> int:
    """Run export command.

    Args:
        settings: Resolved export settings

    Returns:
        Exit code (0 for success, item failures included)
    """
    return asyncio.run(_run_export_async(settings))
