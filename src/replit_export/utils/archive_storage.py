"""On-disk layout and post-processing of downloaded Repl archives.

Storage Structure:
    {output}/{repl_id}.zip                  transient, removed after extraction
    {output}/{slug}/                        extracted Repl
    {output}/{slug}/repl.metadata.json      full Repl record
    {output}/{slug}/.env                    user secrets, platform variables removed

Post-processing is idempotent: the metadata sidecar and the .env file are
only written when absent, so re-running on a resumed page leaves them
untouched.

Example:
    archive = ReplArchive(repl, Path("repls"), ["node_modules/"])
    with archive.open_sink() as sink:
        ...  # download into sink
    await archive.process()
"""

from __future__ import annotations

import asyncio
import glob
import json
import logging
import os
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, BinaryIO

from replit_export.downloaders.base.protocol import ExtractionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from replit_export.models.repl import Repl

logger = logging.getLogger(__name__)

METADATA_FILENAME = "repl.metadata.json"
ENV_FILENAME = ".env"
ENV_CACHE_PATH = PurePosixPath(".cache/replit/env/latest.json")
EXTRACT_MODE = 0o755

DEFAULT_FILTERS: tuple[str, ...] = (
    "node_modules/",
    ".cargo/",
    ".cache/typescript/",
)

# Variables Replit injects into every Repl; they are not user secrets.
REPLIT_SYSTEM_ENV: frozenset[str] = frozenset(
    {
        "PATH",
        "REQUESTS_CA_BUNDLE",
        "SSL_CERT_FILE",
        "XDG_CACHE_HOME",
        "XDG_CONFIG_HOME",
        "XDG_DATA_HOME",
        "__EGL_VENDOR_LIBRARY_FILENAMES",
        "REPLIT_CLI",
        "REPLIT_BASHRC",
        "NODE_EXTRA_CA_CERTS",
        "NIX_PATH",
        "NIX_PROFILES",
        "NIXPKGS_ALLOW_UNFREE",
        "LIBGL_DRIVERS_PATH",
        "LOCALE_ARCHIVE",
    }
)


def redact_environment(
    environment: Mapping[str, Any],
    deny_list: Iterable[str] = REPLIT_SYSTEM_ENV,
) -> dict[str, str]:
    """Drop deny-listed variables, keeping the rest in their original order."""
    denied = frozenset(deny_list)
    return {
        key: "" if value is None else str(value)
        for key, value in environment.items()
        if key not in denied
    }


def format_env(environment: Mapping[str, str]) -> str:
    """Render variables as KEY=value lines joined with CRLF."""
    return "\r\n".join(f"{key}={value}" for key, value in environment.items())


def extract_zip(archive_path: Path, destination: Path, mode: int = EXTRACT_MODE) -> int:
    """Extract `archive_path` into `destination`.

    Every created file and directory gets `mode`. Members resolving outside
    `destination` are skipped.

    Returns:
        Number of files extracted

    Raises:
        ExtractionError: If the archive is unreadable
    """
    root = destination.resolve()
    root.mkdir(parents=True, exist_ok=True)
    os.chmod(root, mode)
    extracted = 0

    try:
        with zipfile.ZipFile(archive_path) as zf:
            for member in zf.infolist():
                target = (root / member.filename).resolve()
                if target != root and not target.is_relative_to(root):
                    logger.warning(
                        "Skipping archive member outside destination: %s",
                        member.filename,
                    )
                    continue

                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    os.chmod(target, mode)
                    continue

                _make_dirs(target.parent, root, mode)
                with zf.open(member) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                os.chmod(target, mode)
                extracted += 1
    # zlib.error: corrupt deflate data; RuntimeError: encrypted members;
    # NotImplementedError: unsupported compression method
    except (
        zipfile.BadZipFile,
        zipfile.LargeZipFile,
        zlib.error,
        NotImplementedError,
        RuntimeError,
        OSError,
        EOFError,
    ) as e:
        raise ExtractionError(f"Cannot extract {archive_path}: {e}", cause=e) from e

    return extracted


def _make_dirs(path: Path, root: Path, mode: int) -> None:
    missing: list[Path] = []
    while path != root and not path.exists():
        missing.append(path)
        path = path.parent
    for directory in reversed(missing):
        directory.mkdir(exist_ok=True)
        os.chmod(directory, mode)


def remove_matches(root: Path, patterns: Iterable[str]) -> list[Path]:
    """Recursively remove every path under `root` matching a glob pattern.

    Patterns are relative to `root`; a trailing slash matches directories
    only. Paths that disappear meanwhile are ignored, and matches resolving
    outside `root` (absolute patterns, `..`) are never touched.

    Returns:
        Removed paths
    """
    base = root.resolve()
    removed: list[Path] = []
    for pattern in patterns:
        if not pattern:
            continue
        matches = glob.glob(
            pattern, root_dir=root, recursive=True, include_hidden=True
        )
        # Deepest first so nested matches go before their parents.
        for match in sorted(matches, key=len, reverse=True):
            path = root / match
            # The parent is resolved but not the match itself, so a symlink
            # inside the tree is unlinked rather than followed.
            target = Path(os.path.normpath(path.parent.resolve() / path.name))
            if target == base or not target.is_relative_to(base):
                logger.warning("Skipping filter match outside %s: %s", root, match)
                continue
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except FileNotFoundError:
                continue
            removed.append(path)
    return removed


class ReplArchive:
    """Archive and extracted tree of one Repl.

    Attributes:
        repl: The Repl record
        zip_path: Where the archive is downloaded to
        folder: Where the archive is extracted to
        filters: Glob patterns removed from the extracted tree
    """

    def __init__(
        self,
        repl: Repl,
        output: Path | str,
        filters: Sequence[str] | None = None,
    ) -> None:
        output = Path(output)
        self.repl = repl
        self.filters: list[str] = list(filters or [])
        self.zip_path = output / f"{repl.id}.zip"
        self.folder = output / repl.slug

    @property
    def metadata_path(self) -> Path:
        return self.folder / METADATA_FILENAME

    @property
    def env_path(self) -> Path:
        return self.folder / ENV_FILENAME

    @property
    def env_cache_path(self) -> Path:
        return self.folder / ENV_CACHE_PATH

    def open_sink(self) -> BinaryIO:
        """Open the archive file for the download to write into."""
        self.zip_path.parent.mkdir(parents=True, exist_ok=True)
        return open(self.zip_path, "wb")

    def extract(self) -> int:
        """Extract the archive, then delete it whatever the outcome.

        Raises:
            ExtractionError: If the archive is missing or unreadable
        """
        try:
            return extract_zip(self.zip_path, self.folder)
        finally:
            self.zip_path.unlink(missing_ok=True)

    def apply_filters(self) -> list[Path]:
        """Remove paths matching the configured filters."""
        removed = remove_matches(self.folder, self.filters)
        if removed:
            logger.debug(
                "Filtered %d path(s) from %s", len(removed), self.repl.display_name
            )
        return removed

    def write_metadata(self) -> bool:
        """Write the metadata sidecar if absent.

        Returns:
            True if the file was written
        """
        if self.metadata_path.exists():
            return False
        record = self.repl.model_dump(mode="json", by_alias=True)
        self.metadata_path.write_text(json.dumps(record, indent=4), encoding="utf-8")
        return True

    def read_env_cache(self) -> dict[str, Any] | None:
        """Read the environment map Replit caches inside the Repl.

        A malformed cache file is logged and treated as absent.
        """
        path = self.env_cache_path
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning(
                "Ignoring malformed env cache of %s: %s", self.repl.display_name, e
            )
            return None

        environment = data.get("environment") if isinstance(data, dict) else None
        if not isinstance(environment, dict):
            logger.warning(
                "Ignoring env cache of %s: no environment object",
                self.repl.display_name,
            )
            return None
        return environment

    def write_env(self) -> bool:
        """Write the redacted .env file if absent and a cache exists.

        Returns:
            True if the file was written
        """
        if self.env_path.exists():
            return False
        environment = self.read_env_cache()
        if environment is None:
            return False
        self.env_path.write_text(
            format_env(redact_environment(environment)), encoding="utf-8", newline=""
        )
        return True

    def process_sync(self) -> None:
        """Extract and post-process the archive.

        Raises:
            ExtractionError: If extraction fails
        """
        self.extract()
        self.apply_filters()
        self.write_metadata()
        self.write_env()
        logger.info("Extracted %s", self.repl.display_name)

    async def process(self) -> None:
        """Run process_sync in a worker thread."""
        await asyncio.to_thread(self.process_sync)


async def process_batch(archives: Sequence[ReplArchive]) -> list[str]:
    """Post-process a page of archives concurrently.

    Returns:
        Ids of the Repls whose processing failed
    """

    async def run(archive: ReplArchive) -> str | None:
        try:
            await archive.process()
        except (ExtractionError, OSError) as e:
            logger.warning(
                "Failed to process %s: %s", archive.repl.display_name, e
            )
            return archive.repl.id
        except Exception:
            logger.exception(
                "Unexpected error processing %s", archive.repl.display_name
            )
            return archive.repl.id
        return None

    results = await asyncio.gather(*(run(archive) for archive in archives))
    return [repl_id for repl_id in results if repl_id is not None]
