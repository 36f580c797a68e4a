"""Exception hierarchy for playlistdb.

Each stage of the ingestion pipeline raises its own error type so the
orchestrator and the CLI can tell fatal problems from retryable ones.
"""

from __future__ import annotations


class PlaylistDBError(Exception):
    """Base exception for all playlistdb failures."""


class ValidationError(PlaylistDBError):
    """Raised when a normalized record lacks required fields or has bad values."""

    def __init__(self, missing: list[str] | None = None, message: str | None = None) -> None:
        self.missing = list(missing or [])
        if message is None:
            details = ", ".join(f"Required field missing: {f}" for f in self.missing)
            message = f"Validation failed: {details}"
        super().__init__(message)


class TransientStoreError(PlaylistDBError):
    """Raised for any failure inside a batch transaction. Safe to retry."""


class FatalIOError(PlaylistDBError):
    """Raised when a source file is missing, unreadable or not valid JSON."""


class ConfigurationError(PlaylistDBError):
    """Raised for invalid configuration or a store used before ``connect()``."""


class BatchProcessingError(PlaylistDBError):
    """Raised when a batch operation fails; carries the batch index and cause."""

    def __init__(self, batch_index: int, batch_size: int, error: BaseException) -> None:
        self.batch_index = batch_index
        self.batch_size = batch_size
        self.error = error
        super().__init__(f"Batch {batch_index + 1} ({batch_size} items) failed: {error}")
