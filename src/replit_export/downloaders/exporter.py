"""Bulk archive download of Repls.

Given one page of Repls and one writable sink per Repl, downloads every
archive concurrently. The page size is the concurrency bound: there is no
additional throttling beyond the rate-limit policy.

A failing Repl never cancels its siblings. Each transfer resolves to
exactly one TransferOutcome and the batch returns one outcome per input,
in input order.

Example usage:
    async with ReplExporter(config) as exporter:
        archives = [ReplArchive(repl, output, filters) for repl in page.items]
        result = await exporter.download_batch(
            page.items, [archive.open_sink() for archive in archives]
        )
        print(result.failed)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, BinaryIO
from urllib.parse import quote

from replit_export.downloaders.base.base_downloader import (
    BaseDownloader,
    iter_body,
)
from replit_export.downloaders.base.protocol import (
    BatchResult,
    ExportError,
    InvalidContentTypeError,
    SinkClosedError,
    TransferOutcome,
)
from replit_export.utils.http_client import HTTPClientError

if TYPE_CHECKING:
    from collections.abc import Sequence

    import aiohttp

    from replit_export.models.repl import Repl

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/zip",
        "application/x-zip-compressed",
        "application/octet-stream",
    }
)

# Statuses the /replid/{id} lookup answers with when it knows the Repl
REDIRECT_STATUSES = range(300, 400)


def media_type(content_type: str | None) -> str:
    """Strip parameters from a Content-Type value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


class ReplExporter(BaseDownloader):
    """Downloads Repl archives into caller-provided sinks."""

    async def archive_url(self, repl: Repl) -> str:
        """Resolve the canonical archive URL of a Repl.

        The owner's username gives the URL directly. Without it the Repl's
        canonical page is looked up through the /replid/{id} redirect.
        """
        if repl.owner_username:
            return f"/@{quote(repl.owner_username)}/{quote(repl.slug)}.zip"

        response = await self._request(
            "GET",
            f"/replid/{quote(repl.id)}",
            accepted=REDIRECT_STATUSES,
            allow_redirects=False,
            repl_id=repl.id,
        )
        location = response.location
        if not location:
            raise ExportError("Repl URL lookup returned no location", repl_id=repl.id)
        return f"{location.rstrip('/')}.zip"

    async def download_repl(self, repl: Repl, sink: BinaryIO) -> TransferOutcome:
        """Stream one Repl's archive into `sink`.

        The sink is closed once the transfer reaches a terminal state.

        Raises:
            SinkClosedError: If `sink` is already closed
            InvalidContentTypeError: If the response is not an archive
            ExportError: If the URL cannot be resolved
            RetryableError, HTTPClientError: If the retry budget is spent
        """
        if sink.closed:
            raise SinkClosedError("Sink closed before transfer", repl_id=repl.id)

        try:
            url = await self.archive_url(repl)

            async def consume(response: aiohttp.ClientResponse) -> int:
                content_type = response.headers.get("Content-Type")
                if media_type(content_type) not in ARCHIVE_CONTENT_TYPES:
                    raise InvalidContentTypeError(
                        f"Expected an archive, got {content_type or 'no content type'}",
                        content_type=content_type,
                        repl_id=repl.id,
                    )
                # A retried attempt starts the archive over.
                if sink.seekable():
                    sink.seek(0)
                    sink.truncate()
                # Disk writes run in worker threads so a page of concurrent
                # streams never blocks the event loop.
                written = 0
                async for chunk in iter_body(response):
                    await asyncio.to_thread(sink.write, chunk)
                    written += len(chunk)
                await asyncio.to_thread(sink.flush)
                return written

            written = await self._stream(url, consume, repl_id=repl.id)
        finally:
            sink.close()

        logger.debug("Downloaded %s (%d bytes)", repl.display_name, written)
        return TransferOutcome.succeeded(repl.id, bytes_written=written)

    async def _transfer(self, repl: Repl, sink: BinaryIO) -> TransferOutcome:
        """Run one transfer, downgrading any item failure to an outcome."""
        try:
            return await self.download_repl(repl, sink)
        except (ExportError, HTTPClientError, OSError) as e:
            logger.warning("Failed to download %s: %s", repl.display_name, e)
            return TransferOutcome.failed(repl.id, str(e))
        except Exception as e:
            logger.exception("Unexpected error downloading %s", repl.display_name)
            return TransferOutcome.failed(repl.id, f"{type(e).__name__}: {e}")

    async def download_batch(
        self,
        repls: Sequence[Repl],
        sinks: Sequence[BinaryIO],
    ) -> BatchResult:
        """Download a page of Repls concurrently.

        Args:
            repls: Repls to download
            sinks: One writable sink per Repl, paired by position

        Returns:
            BatchResult with exactly one outcome per Repl

        Raises:
            ValueError: If repls and sinks differ in length
        """
        if len(repls) != len(sinks):
            raise ValueError(
                f"Got {len(repls)} repls but {len(sinks)} sinks; "
                "each repl needs exactly one sink"
            )

        outcomes = await asyncio.gather(
            *(self._transfer(repl, sink) for repl, sink in zip(repls, sinks))
        )
        result = BatchResult(outcomes=list(outcomes))
        logger.info(
            "Downloaded %d/%d repls", len(result.succeeded), len(result)
        )
        return result
