"""Tests for archive extraction and post-processing."""

from __future__ import annotations

import io
import json
import os
import stat
import zipfile
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from replit_export.downloaders.base.protocol import ExtractionError
from replit_export.models.repl import Repl
from replit_export.utils.archive_storage import (
    DEFAULT_FILTERS,
    METADATA_FILENAME,
    ReplArchive,
    extract_zip,
    format_env,
    process_batch,
    redact_environment,
    remove_matches,
)

ZipFactory = Callable[[Mapping[str, str | bytes]], bytes]


def _downloaded(archive: ReplArchive, content: bytes) -> ReplArchive:
    archive.zip_path.parent.mkdir(parents=True, exist_ok=True)
    archive.zip_path.write_bytes(content)
    return archive


def _corrupt_deflated_zip() -> bytes:
    """A deflated zip whose central directory is intact but whose data is not."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("main.py", "".join(f"print({i})\n" for i in range(2000)))
    data = bytearray(buffer.getvalue())

    with zipfile.ZipFile(io.BytesIO(bytes(data))) as zf:
        info = zf.getinfo("main.py")
    start = info.header_offset + 30 + len(info.filename.encode()) + len(info.extra)
    length = min(40, info.compress_size)
    # 0xFF sets the reserved deflate block type.
    data[start : start + length] = b"\xff" * length
    return bytes(data)


class TestRedactEnvironment:
    """Tests for environment redaction."""

    def test_drops_platform_variables(self) -> None:
        env = {"PATH": "/bin", "API_KEY": "k", "REPLIT_CLI": "x", "DB_URL": "d"}

        assert redact_environment(env) == {"API_KEY": "k", "DB_URL": "d"}

    def test_keeps_order(self) -> None:
        env = {"Z": "1", "A": "2", "M": "3"}

        assert list(redact_environment(env)) == ["Z", "A", "M"]

    def test_custom_deny_list(self) -> None:
        assert redact_environment({"A": "1", "B": "2"}, deny_list={"A"}) == {"B": "2"}

    def test_non_string_values(self) -> None:
        assert redact_environment({"PORT": 8080, "EMPTY": None}) == {
            "PORT": "8080",
            "EMPTY": "",
        }


class TestFormatEnv:
    def test_crlf_join(self) -> None:
        assert format_env({"A": "1", "B": "two"}) == "A=1\r\nB=two"

    def test_empty(self) -> None:
        assert format_env({}) == ""


class TestExtractZip:
    """Tests for extract_zip."""

    def test_extracts_with_mode(self, tmp_path: Path, zip_bytes: ZipFactory) -> None:
        archive = tmp_path / "a.zip"
        archive.write_bytes(zip_bytes({"main.py": "x", "pkg/mod.py": "y"}))

        count = extract_zip(archive, tmp_path / "out")

        assert count == 2
        assert (tmp_path / "out" / "pkg" / "mod.py").read_text() == "y"
        mode = stat.S_IMODE(os.stat(tmp_path / "out" / "main.py").st_mode)
        assert mode == 0o755

    def test_corrupt_archive(self, tmp_path: Path) -> None:
        archive = tmp_path / "a.zip"
        archive.write_bytes(b"this is not a zip")

        with pytest.raises(ExtractionError):
            extract_zip(archive, tmp_path / "out")

    def test_corrupt_compressed_data(self, tmp_path: Path) -> None:
        archive = tmp_path / "a.zip"
        archive.write_bytes(_corrupt_deflated_zip())

        with pytest.raises(ExtractionError):
            extract_zip(archive, tmp_path / "out")

    def test_skips_members_outside_destination(
        self, tmp_path: Path, zip_bytes: ZipFactory
    ) -> None:
        archive = tmp_path / "a.zip"
        archive.write_bytes(zip_bytes({"../escape.txt": "x", "ok.txt": "y"}))

        count = extract_zip(archive, tmp_path / "out")

        assert count == 1
        assert not (tmp_path / "escape.txt").exists()


class TestRemoveMatches:
    """Tests for glob filtering."""

    def test_directory_patterns(self, tmp_path: Path) -> None:
        (tmp_path / "node_modules" / "x").mkdir(parents=True)
        (tmp_path / "node_modules" / "x" / "index.js").write_text("1")
        (tmp_path / "main.py").write_text("1")

        removed = remove_matches(tmp_path, ["node_modules/"])

        assert removed == [tmp_path / "node_modules/"]
        assert not (tmp_path / "node_modules").exists()
        assert (tmp_path / "main.py").exists()

    def test_recursive_and_hidden(self, tmp_path: Path) -> None:
        (tmp_path / "a" / ".cache" / "typescript").mkdir(parents=True)
        (tmp_path / "a" / "b.log").write_text("x")
        (tmp_path / ".hidden.log").write_text("x")

        remove_matches(tmp_path, ["**/*.log", "**/.cache/typescript/"])

        assert not (tmp_path / "a" / "b.log").exists()
        assert not (tmp_path / ".hidden.log").exists()
        assert not (tmp_path / "a" / ".cache" / "typescript").exists()
        assert (tmp_path / "a" / ".cache").exists()

    def test_no_matches(self, tmp_path: Path) -> None:
        assert remove_matches(tmp_path, ["node_modules/", ""]) == []

    def test_never_removes_outside_root(self, tmp_path: Path) -> None:
        root = tmp_path / "repl"
        (root / "keep").mkdir(parents=True)
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "data.txt").write_text("x")

        removed = remove_matches(root, [f"{outside}/", "../outside/", "./", "../"])

        assert removed == []
        assert (outside / "data.txt").exists()
        assert (root / "keep").exists()


class TestReplArchive:
    """Tests for ReplArchive post-processing."""

    def test_layout(self, tmp_path: Path, sample_repl: Repl) -> None:
        archive = ReplArchive(sample_repl, tmp_path)

        assert archive.zip_path == tmp_path / f"{sample_repl.id}.zip"
        assert archive.folder == tmp_path / "flask-app"
        assert archive.metadata_path.name == METADATA_FILENAME

    def test_process_full_pipeline(
        self, tmp_path: Path, sample_repl: Repl, sample_archive: bytes
    ) -> None:
        archive = _downloaded(
            ReplArchive(sample_repl, tmp_path, DEFAULT_FILTERS), sample_archive
        )

        archive.process_sync()

        folder = tmp_path / "flask-app"
        assert (folder / "main.py").read_text() == "print('hello')\n"
        assert (folder / "src" / "app.py").exists()
        assert not (folder / "node_modules").exists()
        assert not (folder / ".cargo").exists()
        assert not archive.zip_path.exists()

        metadata = json.loads((folder / METADATA_FILENAME).read_text())
        assert metadata["id"] == sample_repl.id
        assert metadata["isPrivate"] is True
        assert metadata["domains"][0]["hosting_deployment_id"] == "dep-1"

        assert (folder / ".env").read_bytes() == b"API_KEY=secret"

    def test_processing_is_idempotent(
        self, tmp_path: Path, sample_repl: Repl, sample_archive: bytes
    ) -> None:
        archive = _downloaded(ReplArchive(sample_repl, tmp_path), sample_archive)
        archive.process_sync()
        archive.metadata_path.write_text("{}")
        archive.env_path.write_text("EDITED=1")

        _downloaded(archive, sample_archive).process_sync()

        assert archive.metadata_path.read_text() == "{}"
        assert archive.env_path.read_text() == "EDITED=1"

    def test_no_env_cache_no_env_file(
        self, tmp_path: Path, sample_repl: Repl, zip_bytes: ZipFactory
    ) -> None:
        archive = _downloaded(
            ReplArchive(sample_repl, tmp_path), zip_bytes({"main.py": "x"})
        )

        archive.process_sync()

        assert not archive.env_path.exists()
        assert archive.metadata_path.exists()

    def test_malformed_env_cache_is_ignored(
        self,
        tmp_path: Path,
        sample_repl: Repl,
        zip_bytes: ZipFactory,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        archive = _downloaded(
            ReplArchive(sample_repl, tmp_path),
            zip_bytes({".cache/replit/env/latest.json": "{not json"}),
        )

        archive.process_sync()

        assert not archive.env_path.exists()
        assert "malformed env cache" in caplog.text

    def test_env_cache_without_environment(
        self, tmp_path: Path, sample_repl: Repl, zip_bytes: ZipFactory
    ) -> None:
        archive = _downloaded(
            ReplArchive(sample_repl, tmp_path),
            zip_bytes({".cache/replit/env/latest.json": '{"other": 1}'}),
        )

        archive.process_sync()

        assert not archive.env_path.exists()

    def test_corrupt_archive_is_removed(
        self, tmp_path: Path, sample_repl: Repl
    ) -> None:
        archive = _downloaded(ReplArchive(sample_repl, tmp_path), b"garbage")

        with pytest.raises(ExtractionError):
            archive.process_sync()

        assert not archive.zip_path.exists()

    def test_open_sink(self, tmp_path: Path, sample_repl: Repl) -> None:
        archive = ReplArchive(sample_repl, tmp_path / "nested")

        with archive.open_sink() as sink:
            sink.write(b"PK")

        assert archive.zip_path.read_bytes() == b"PK"


@pytest.mark.asyncio
class TestProcessBatch:
    """Tests for process_batch."""

    async def test_reports_only_failures(
        self,
        tmp_path: Path,
        repl_factory: Callable[..., dict],
        zip_bytes: ZipFactory,
    ) -> None:
        good = _downloaded(
            ReplArchive(Repl.model_validate(repl_factory("r1")), tmp_path),
            zip_bytes({"main.py": "x"}),
        )
        bad = _downloaded(
            ReplArchive(Repl.model_validate(repl_factory("r2")), tmp_path),
            b"garbage",
        )

        failed = await process_batch([good, bad])

        assert failed == ["r2"]
        assert (tmp_path / "r1" / "main.py").exists()

    async def test_corrupt_compressed_data_fails_only_that_repl(
        self,
        tmp_path: Path,
        repl_factory: Callable[..., dict],
        zip_bytes: ZipFactory,
    ) -> None:
        bad = _downloaded(
            ReplArchive(Repl.model_validate(repl_factory("bad")), tmp_path),
            _corrupt_deflated_zip(),
        )
        good = _downloaded(
            ReplArchive(Repl.model_validate(repl_factory("good")), tmp_path),
            zip_bytes({"main.py": "x"}),
        )

        failed = await process_batch([bad, good])

        assert failed == ["bad"]
        assert (tmp_path / "good" / "main.py").exists()
        assert not bad.zip_path.exists()

    async def test_unexpected_error_fails_only_that_repl(
        self,
        tmp_path: Path,
        repl_factory: Callable[..., dict],
        zip_bytes: ZipFactory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        broken = _downloaded(
            ReplArchive(Repl.model_validate(repl_factory("r1")), tmp_path),
            zip_bytes({"main.py": "x"}),
        )
        good = _downloaded(
            ReplArchive(Repl.model_validate(repl_factory("r2")), tmp_path),
            zip_bytes({"main.py": "y"}),
        )

        def explode() -> bool:
            raise ValueError("boom")

        monkeypatch.setattr(broken, "write_metadata", explode)

        failed = await process_batch([broken, good])

        assert failed == ["r1"]
        assert (tmp_path / "r2" / METADATA_FILENAME).exists()

    async def test_empty_batch(self) -> None:
        assert await process_batch([]) == []
