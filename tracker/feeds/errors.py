"""Error taxonomy for feed synchronization.

Every failure raised by the fetch, register, and job layers derives from
FeedError so callers can draw a single boundary around a sync run.

    NetworkTransient    : retryable transport / HTTP failure
    NotFound            : resource absent; terminal but not an error
    RetriesExhausted    : all attempts failed; fatal to the calling sync
    VendorShapeError    : malformed or unexpected vendor payload
    PartialBatchFailure : one or more datasets failed in a job's loop
    RegisterError       : persisted register state cannot be read
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracker.feeds.jobs.base import JobResult


class FeedError(Exception):
    """Base exception for all feed sync failures."""


class NetworkTransient(FeedError):
    """A request failed in a way that is worth retrying."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Transient failure fetching {url}: {reason}")


class NotFound(FeedError):
    """The vendor reported the resource as absent."""

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Resource not found at {url} (status={status_code})")


class RetriesExhausted(FeedError):
    """Every attempt to fetch a URL failed."""

    def __init__(
        self,
        url: str,
        attempts: int,
        dataset: str | None = None,
        last_error: Exception | None = None,
    ) -> None:
        self.url = url
        self.attempts = attempts
        self.dataset = dataset
        self.last_error = last_error
        super().__init__(url, attempts)

    def __str__(self) -> str:
        target = f" for dataset '{self.dataset}'" if self.dataset else ""
        msg = f"Failed to fetch {self.url}{target} after {self.attempts} attempts"
        if self.last_error is not None:
            msg += f" (last error: {self.last_error})"
        return msg


class VendorShapeError(FeedError):
    """A vendor response did not have the expected structure."""


class PartialBatchFailure(FeedError):
    """Raised after a dataset loop in which at least one dataset failed.

    The loop itself always runs to completion (or to its time budget);
    this is only raised afterwards so the entry point can decide whether
    to continue with the next job.
    """

    def __init__(self, result: "JobResult") -> None:
        self.result = result
        names = ", ".join(f.dataset for f in result.failures[:5])
        more = len(result.failures) - 5
        if more > 0:
            names += f" (+{more} more)"
        super().__init__(
            f"Job '{result.job}' failed for {len(result.failures)} dataset(s): {names}"
        )


class RegisterError(FeedError):
    """Persisted register state is unreadable."""
