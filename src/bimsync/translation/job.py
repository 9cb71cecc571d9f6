"""
Translation job tracking.

A TranslationJob follows one version urn through the upstream derivative
service:

    submitted -> polling -> {succeeded, failed, timed_out}

``cancelled`` is the fourth terminal state, entered when a newer version of
the same item supersedes the job or its sync session is disposed.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from bimsync.exceptions import BimSyncError
from bimsync.sources.types import Manifest


class JobState(StrEnum):
    """Translation job state."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED})


@dataclass(eq=False)
class TranslationJob:
    """
    One derivative translation of one version.

    ``result`` holds the Manifest once succeeded, or the typed error
    (TranslationFailure, TimeoutError_, AuthError, ...) once failed or timed
    out. Times are tracker-clock seconds.
    """

    version_urn: str
    item_id: str | None = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.SUBMITTED
    submitted_at: float | None = None
    last_polled_at: float | None = None
    completed_at: float | None = None
    attempts: int = 0
    backoff_ms: int = 0
    result: Manifest | Exception | None = None

    # Last progress/status text reported upstream (or cancel reason)
    last_message: str | None = None

    _done: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def manifest(self) -> Manifest | None:
        return self.result if isinstance(self.result, Manifest) else None

    @property
    def error(self) -> Exception | None:
        return self.result if isinstance(self.result, Exception) else None

    def mark_polled(self, now: float) -> None:
        """Record a poll being issued."""
        self.state = JobState.POLLING
        self.attempts += 1
        self.last_polled_at = now

    def succeed(self, manifest: Manifest, now: float | None = None) -> None:
        self._finish(JobState.SUCCEEDED, manifest, now)

    def fail(self, error: Exception, now: float | None = None) -> None:
        self._finish(JobState.FAILED, error, now)

    def time_out(self, error: BimSyncError, now: float | None = None) -> None:
        self._finish(JobState.TIMED_OUT, error, now)

    def cancel(self, reason: str | None = None, now: float | None = None) -> None:
        self.last_message = reason
        self._finish(JobState.CANCELLED, None, now)

    def _finish(self, state: JobState, result: Manifest | Exception | None, now: float | None) -> None:
        if self.is_terminal:
            return
        self.state = state
        self.result = result
        self.completed_at = now
        self._done.set()

    async def wait(self) -> "TranslationJob":
        """Wait until the job reaches a terminal state."""
        await self._done.wait()
        return self

    def elapsed_s(self, now: float) -> float:
        if self.submitted_at is None:
            return 0.0
        return now - self.submitted_at

    def get_summary(self) -> dict[str, Any]:
        """Get job summary."""
        error = self.error
        return {
            "job_id": self.job_id,
            "version_urn": self.version_urn,
            "item_id": self.item_id,
            "state": self.state.value,
            "attempts": self.attempts,
            "backoff_ms": self.backoff_ms,
            "derivative_count": self.manifest.derivative_count if self.manifest else None,
            "error_type": type(error).__name__ if error else None,
            "error_message": str(error) if error else None,
            "last_message": self.last_message,
        }
