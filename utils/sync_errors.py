"""
Error types raised and recorded by the inventory sync engine.
"""

from typing import List, Optional


class SyncError(Exception):
    """Base class for sync engine errors."""


class SourceError(SyncError):
    """A record source answered with a non-2xx status or ``success: false``."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        status_hint = f" (status={status_code})" if status_code is not None else ""
        super().__init__(f"{message}{status_hint}")

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class FacetsUnavailable(SyncError):
    """The record source has no facet endpoint, or it failed."""


class FetchFailed(SyncError):
    """A single page request failed."""

    def __init__(self, offset: int, cause: str):
        self.offset = offset
        self.cause = cause
        super().__init__(f"Fetch at offset {offset} failed: {cause}")


class TransientFetchError(FetchFailed):
    """Network failure, timeout or server-side error on one page."""


class CountProbeFailure(SyncError):
    """The best-effort row count could not be obtained."""


class FacetComputationEmpty(SyncError):
    """A scoped facet computation produced no values."""


class PermanentPageFailure(SyncError):
    """A page that exhausted its retry budget. Recorded on the result, never raised by the driver."""

    def __init__(self, offset: int, attempts: int, cause: str):
        self.offset = offset
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Page at offset {offset} failed after {attempts} attempts: {cause}")


class RunAborted(SyncError):
    """A run stopped before reaching the end of the data."""

    def __init__(self, reason: str, failures: Optional[List[PermanentPageFailure]] = None):
        self.reason = reason
        self.failures = list(failures or [])
        super().__init__(f"Sync run aborted: {reason}")
