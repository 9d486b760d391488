"""Error taxonomy and transfer outcome types.

Every failure the export pipeline can produce derives from ExportError.
Errors that concern a single Repl carry its id so a batch can report
exactly which items failed.

Propagation:
    - AuthenticationError, ApiError: systemic, terminate the run
    - RateLimitError: absorbed by the rate-limit policy, never surfaced
    - RetryableError: retried, then re-raised unmodified
    - InvalidContentTypeError, SinkClosedError, ExtractionError: per item,
      downgraded to a failed TransferOutcome at the batch boundary
    - StateCorruptionError: logged, the run starts fresh
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ExportError(Exception):
    """Base exception for export errors."""

    def __init__(
        self,
        message: str,
        repl_id: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the export error.

        Args:
            message: Human-readable error description
            repl_id: Repl the error concerns, if item-specific
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.repl_id = repl_id
        self.cause = cause

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.repl_id:
            parts.append(f"repl_id={self.repl_id}")
        return " ".join(parts)


class AuthenticationError(ExportError):
    """Raised when the session cookie is missing, invalid or expired."""

    def __init__(
        self,
        message: str = "Invalid authorization cookie (connect.sid)",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class ApiError(ExportError):
    """Raised when the API answers with an error envelope or a malformed body."""

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.errors:
            return base
        messages = [str(e.get("message", e)) for e in self.errors]
        return f"{base}: {'; '.join(messages)}"


class RateLimitError(ExportError):
    """Raised when the server answers 429."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class InvalidContentTypeError(ExportError):
    """Raised when an archive download does not return an archive."""

    def __init__(self, message: str, content_type: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.content_type = content_type


class SinkClosedError(ExportError):
    """Raised when a download sink was closed before the transfer started."""

    pass


class ExtractionError(ExportError):
    """Raised when an archive cannot be read or extracted."""

    pass


class StateCorruptionError(ExportError):
    """Raised when the save file cannot be parsed."""

    pass


class TransferStatus(Enum):
    """Terminal state of one Repl's transfer."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    """Result of downloading one Repl.

    Attributes:
        repl_id: Repl identifier
        status: Terminal state
        bytes_written: Archive bytes written to the sink
        error_message: Failure reason if status is FAILED
    """

    repl_id: str
    status: TransferStatus
    bytes_written: int = 0
    error_message: str | None = None

    def __post_init__(self) -> None:
        if self.status == TransferStatus.FAILED and not self.error_message:
            object.__setattr__(
                self, "error_message", "Transfer failed with no error message"
            )

    @classmethod
    def succeeded(cls, repl_id: str, bytes_written: int = 0) -> TransferOutcome:
        return cls(repl_id=repl_id, status=TransferStatus.SUCCEEDED, bytes_written=bytes_written)

    @classmethod
    def failed(cls, repl_id: str, reason: str) -> TransferOutcome:
        return cls(repl_id=repl_id, status=TransferStatus.FAILED, error_message=reason)

    @property
    def is_successful(self) -> bool:
        return self.status == TransferStatus.SUCCEEDED


@dataclass
class BatchResult:
    """Outcomes of one page of transfers, in input order."""

    outcomes: list[TransferOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        """Ids of the Repls whose transfer failed."""
        return [o.repl_id for o in self.outcomes if not o.is_successful]

    @property
    def succeeded(self) -> list[str]:
        """Ids of the Repls whose transfer succeeded."""
        return [o.repl_id for o in self.outcomes if o.is_successful]

    def __len__(self) -> int:
        return len(self.outcomes)
