"""Resumable run state persisted between exporter runs.

The state holds the pagination cursor of the last completed page and the
id of the account that produced it. It is rewritten in full after every
page, so a crash loses at most the page that was in flight.

File format (JSON):
    {"cursor": "...", "hasNextPage": true, "user": 12345}

Save files written by earlier releases of the exporter stored the cursor
as {"pageInfo": {"nextCursor": "...", "hasNextPage": true}}; those are
still accepted on load.

Example usage:
    store = StateStore(".replit-export.save")
    state = store.load() or ExportState()
    ...
    store.save(state)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from replit_export.downloaders.base.protocol import StateCorruptionError

logger = logging.getLogger(__name__)

DEFAULT_SAVE_FILE = ".replit-export.save"


class ExportState(BaseModel):
    """Checkpoint of an export run.

    Attributes:
        cursor: Continuation token of the next page, None to start over
        has_next_page: False once the listing reported its last page
        user: Id of the account the cursor belongs to
    """

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        validate_assignment=True,
    )

    cursor: str | None = None
    has_next_page: bool = True
    user: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_page_info(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("pageInfo"), dict):
            page_info = data["pageInfo"]
            data = {k: v for k, v in data.items() if k != "pageInfo"}
            data.setdefault("cursor", page_info.get("nextCursor"))
            data.setdefault("hasNextPage", page_info.get("hasNextPage", True))
        return data

    def matches(self, identity: int) -> bool:
        return self.user == identity

    def for_identity(self, identity: int) -> ExportState:
        """Return the state valid for `identity`.

        A cursor recorded for a different account is discarded.
        """
        if self.matches(identity):
            return self
        return ExportState(user=identity)


class StateStore:
    """File-backed persistence for ExportState."""

    def __init__(self, path: Path | str = DEFAULT_SAVE_FILE) -> None:
        self.path = Path(path)

    def read(self) -> ExportState | None:
        """Read the save file.

        Returns:
            The stored state, or None if the file does not exist

        Raises:
            StateCorruptionError: If the file exists but cannot be parsed
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StateCorruptionError(
                f"Cannot read save file {self.path}: {e}", cause=e
            ) from e

        try:
            return ExportState.model_validate_json(raw)
        except ValidationError as e:
            raise StateCorruptionError(
                f"Save file {self.path} is corrupt", cause=e
            ) from e

    def load(self) -> ExportState | None:
        """Load the save file, treating a corrupt file as absent."""
        try:
            state = self.read()
        except StateCorruptionError as e:
            logger.warning("Ignoring save file: %s", e)
            return None

        if state is not None:
            logger.info(
                "Resuming state (cursor=%s, user=%s)", state.cursor, state.user
            )
        return state

    def save(self, state: ExportState) -> None:
        """Overwrite the save file with `state`."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            state.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        logger.debug("Saved state to %s", self.path)

