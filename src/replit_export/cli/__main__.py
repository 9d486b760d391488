"""CLI entry point for replit_export.

Usage:
    python -m replit_export.cli --output ./repls --auth "s%3A..."
    python -m replit_export.cli -o ./repls -c 10 -m 50 -f "node_modules/,.cargo/"
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pydantic import ValidationError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Loggers that are chatty at INFO and below
NOISY_LOGGERS = ("aiohttp", "asyncio")


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the whole process."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    if numeric > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not a number: {value}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"Must be at least 1: {value}")
    return number


def _package_version() -> str:
    try:
        return version("replit-export")
    except PackageNotFoundError:
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="replit-export",
        description="Export all of your Repls from replit.com",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {_package_version()}"
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Directory to save Repls to (default: REPLIT_EXPORT_OUTPUT or ./repls)",
    )
    parser.add_argument(
        "-a",
        "--auth",
        help="Replit authorization cookie (connect.sid); "
        "defaults to REPLIT_EXPORT_AUTH",
    )
    parser.add_argument(
        "-l",
        "--load",
        type=Path,
        dest="save_file",
        help="Exporter savefile to continue from (default: .replit-export.save)",
    )
    parser.add_argument(
        "-c",
        "--concurrent",
        type=positive_int,
        help="Maximum concurrent downloads, also the page size (default: 15)",
    )
    parser.add_argument(
        "-m",
        "--max",
        type=positive_int,
        dest="max_repls",
        help="Maximum amount of Repls to download",
    )
    parser.add_argument(
        "-f",
        "--filter",
        dest="filters",
        help="Comma-separated glob patterns removed from each Repl "
        "(default: node_modules/,.cargo/,.cache/typescript/)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    from replit_export.cli.export import run_export
    from replit_export.config.settings import ExportSettings

    overrides = {
        key: value
        for key, value in vars(args).items()
        if key != "log_level" and value is not None
    }
    try:
        settings = ExportSettings(**overrides)
    except ValidationError as e:
        parser.error(str(e))

    if not settings.auth:
        print(
            "Missing authorization cookie: pass --auth or set REPLIT_EXPORT_AUTH",
            file=sys.stderr,
        )
        return 2

    return run_export(settings)


if __name__ == "__main__":
    sys.exit(main())
