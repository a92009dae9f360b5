"""
Exceptions raised by the DB cleaner.

Merge-level failures (MergeError) are contained by the dedup loop.
Phase-level failures are reported on the run result. FetchError aborts the run.
"""

from typing import Optional


class CleanerError(Exception):
    """Base class for DB cleaner failures."""


class FetchError(CleanerError):
    """A paginated read could not reach the store."""


class RecordNotFoundError(CleanerError):
    def __init__(self, model: str, record_id: str):
        super().__init__(f"{model} {record_id} not found")
        self.model = model
        self.record_id = record_id


class MergeError(CleanerError):
    """One merge transaction failed and was rolled back."""

    def __init__(self, keep_id: str, merge_id: str, cause: Exception):
        super().__init__(f"merge {merge_id} -> {keep_id} failed: {cause}")
        self.keep_id = keep_id
        self.merge_id = merge_id
        self.cause = cause


class PhaseError(CleanerError):
    """A corrective phase raised inside the shared transaction."""

    def __init__(self, phase: str, cause: Exception):
        super().__init__(f"{phase}: {cause}")
        self.phase = phase
        self.cause = cause


class TransactionTimeoutError(CleanerError):
    def __init__(self, timeout_seconds: float, elapsed_seconds: Optional[float] = None):
        message = f"transaction exceeded {timeout_seconds:g}s budget"
        if elapsed_seconds is not None:
            message += f" (elapsed {elapsed_seconds:.1f}s)"
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class ReadOnlyViolationError(CleanerError):
    """A write was attempted through the dry-run unit of work."""


class RunInProgressError(CleanerError):
    """Another mutating run holds the single-flight guard."""
