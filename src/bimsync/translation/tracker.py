"""
Derivative translation tracker.

Drives upstream "convert this version into a renderable manifest" jobs to a
terminal state through bounded, backed-off polling. Each job polls on its own
asyncio task, so jobs for different items never serialize against each other,
and at most one poll per job is ever in flight.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from bimsync.config.settings import TranslationSettings
from bimsync.exceptions import (
    SourceError,
    TimeoutError_,
    TranslationFailure,
    TransientNetworkError,
)
from bimsync.sources.types import TranslationPhase, TranslationStatus
from bimsync.translation.job import JobState, TranslationJob
from bimsync.utils.logging import get_logger

logger = get_logger("bimsync.translation.tracker")


class TranslationBackend(Protocol):
    """The part of a SourceAdapter the tracker drives."""

    async def submit_translation(self, urn: str) -> TranslationStatus: ...

    async def translation_status(self, urn: str) -> TranslationStatus: ...


class DerivativeTranslationTracker:
    """
    Registry of translation jobs keyed by version urn.

    Example:
        tracker = DerivativeTranslationTracker(settings.translation)
        job = await tracker.submit(version.urn, adapter, item_id=item_id)
        await job.wait()
        if job.state == JobState.SUCCEEDED:
            render(job.manifest)

    Args:
        settings: Backoff and timeout ceilings
        clock: Monotonic time source in seconds (injectable for tests)
        sleep: Async sleep used between polls (injectable for tests)
    """

    def __init__(
        self,
        settings: TranslationSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or TranslationSettings()
        self._clock = clock
        self._sleep = sleep
        self._jobs: dict[str, TranslationJob] = {}
        self._backends: dict[str, TranslationBackend] = {}
        self._current_by_item: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._in_flight: set[str] = set()

    def get(self, urn: str) -> TranslationJob | None:
        return self._jobs.get(urn)

    @property
    def jobs(self) -> list[TranslationJob]:
        return list(self._jobs.values())

    def is_polling(self, urn: str) -> bool:
        """True while a poll task is scheduled for ``urn``."""
        task = self._tasks.get(urn)
        return task is not None and not task.done()

    async def submit(self, urn: str, backend: TranslationBackend, *, item_id: str | None = None) -> TranslationJob:
        """
        Start (or join) the translation of ``urn``.

        Re-submitting a urn whose job is not terminal returns that same job
        without another upstream call. When ``item_id`` is given, any
        unfinished job for an older version of the item is cancelled.

        Upstream rejecting the job (TranslationFailure) yields a FAILED job.
        Other source errors (auth, not found, transient) are raised: submits
        are not idempotent upstream and are never retried here.
        """
        existing = self._jobs.get(urn)
        if existing is not None and not existing.is_terminal:
            logger.debug(f"Translation of {urn} already {existing.state}, reusing job {existing.job_id}")
            return existing

        if item_id is not None:
            previous = self._current_by_item.get(item_id)
            if previous is not None and previous != urn:
                self.cancel(previous, reason=f"superseded by {urn}")
            self._current_by_item[item_id] = urn

        job = TranslationJob(
            version_urn=urn,
            item_id=item_id,
            submitted_at=self._clock(),
            backoff_ms=self.settings.initial_backoff_ms,
        )
        self._jobs[urn] = job
        self._backends[urn] = backend
        logger.info(f"Submitting translation of {urn} (job {job.job_id})")

        try:
            status = await backend.submit_translation(urn)
        except TranslationFailure as e:
            job.fail(e, self._clock())
            logger.error(f"Translation of {urn} rejected: {e}")
            return job
        except Exception as e:
            job.fail(e, self._clock())
            self._forget(urn, job)
            raise

        if job.is_terminal:
            # Cancelled while the submit was in flight
            return job

        if status.phase == TranslationPhase.SUCCEEDED:
            job.succeed(status.manifest, self._clock())
            logger.info(f"Translation of {urn} already available ({status.manifest.derivative_count} derivatives)")
        elif status.phase == TranslationPhase.FAILED:
            job.fail(
                TranslationFailure(urn, status.message or "rejected upstream", upstream_message=status.message),
                self._clock(),
            )
            logger.error(f"Translation of {urn} failed at submit: {status.message}")
        else:
            job.last_message = status.message
            self._schedule(job)
        return job

    async def poll(self, urn: str) -> TranslationJob:
        """
        Issue one status poll for ``urn`` and apply the result.

        A poll requested while another is still in flight for the same job
        is skipped, so results are always applied in issue order.
        """
        job = self._jobs.get(urn)
        if job is None:
            raise KeyError(f"No translation job for '{urn}'")
        if job.is_terminal or urn in self._in_flight:
            return job

        backend = self._backends[urn]
        self._in_flight.add(urn)
        job.mark_polled(self._clock())
        try:
            status = await backend.translation_status(urn)
        except TransientNetworkError as e:
            logger.warning(f"Poll {job.attempts} of {urn} failed transiently: {e}")
            status = None
            if not job.is_terminal:
                job.last_message = str(e)
        except SourceError as e:
            if not job.is_terminal:
                job.fail(e, self._clock())
                logger.error(f"Translation of {urn} failed: {e}")
            return job
        finally:
            self._in_flight.discard(urn)

        if job.is_terminal:
            # Result of a poll that outlived its job is discarded
            return job

        now = self._clock()
        if status is not None and status.phase == TranslationPhase.SUCCEEDED:
            job.succeed(status.manifest, now)
            logger.info(
                f"Translation of {urn} succeeded after {job.attempts} polls "
                f"({status.manifest.derivative_count} derivatives)"
            )
        elif status is not None and status.phase == TranslationPhase.FAILED:
            job.fail(
                TranslationFailure(
                    urn,
                    status.message or "failed upstream",
                    attempts=job.attempts,
                    upstream_message=status.message,
                ),
                now,
            )
            logger.error(f"Translation of {urn} failed after {job.attempts} polls: {status.message}")
        else:
            if status is not None:
                job.last_message = status.progress or status.message
            self._after_processing(job, now)
        return job

    def cancel(self, urn: str, reason: str | None = None) -> bool:
        """
        Cancel the job for ``urn`` if it is not terminal.

        A poll already in flight is allowed to complete; its result is
        discarded. Returns True if a job was cancelled.
        """
        job = self._jobs.get(urn)
        if job is None or job.is_terminal:
            return False
        job.cancel(reason, self._clock())
        task = self._tasks.pop(urn, None)
        if task is not None and urn not in self._in_flight and task is not asyncio.current_task():
            task.cancel()
        logger.info(f"Translation of {urn} cancelled" + (f": {reason}" if reason else ""))
        return True

    def discard(self, urn: str) -> None:
        """Cancel and drop the job for ``urn`` from the registry."""
        self.cancel(urn, reason="discarded")
        job = self._jobs.get(urn)
        if job is not None:
            self._forget(urn, job)

    def dispose(self) -> None:
        """Cancel every unfinished job and clear the registry."""
        for urn in list(self._jobs):
            self.discard(urn)

    def next_delay_s(self, job: TranslationJob) -> float:
        """Sleep before the next poll: backoff ±jitter, capped at the ceiling."""
        jitter = self.settings.jitter
        delay_ms = job.backoff_ms * random.uniform(1.0 - jitter, 1.0 + jitter) if jitter else job.backoff_ms
        return min(delay_ms, self.settings.max_backoff_ms) / 1000.0

    # --- internals -------------------------------------------------------

    def _after_processing(self, job: TranslationJob, now: float) -> None:
        settings = self.settings
        elapsed = job.elapsed_s(now)
        if job.attempts >= settings.max_attempts or elapsed >= settings.max_elapsed_s:
            job.time_out(
                TimeoutError_(
                    job.version_urn,
                    attempts=job.attempts,
                    elapsed_s=elapsed,
                    upstream_message=job.last_message,
                ),
                now,
            )
            logger.error(f"Translation of {job.version_urn} timed out after {job.attempts} polls ({elapsed:.1f}s)")
            return
        job.backoff_ms = min(job.backoff_ms * 2, settings.max_backoff_ms)
        logger.debug(f"Translation of {job.version_urn} still processing, next poll in ~{job.backoff_ms}ms")

    def _schedule(self, job: TranslationJob) -> None:
        urn = job.version_urn
        task = asyncio.create_task(self._run(job), name=f"translation-poll:{urn}")
        self._tasks[urn] = task

        def _done(finished: asyncio.Task) -> None:
            if self._tasks.get(urn) is finished:
                del self._tasks[urn]

        task.add_done_callback(_done)

    async def _run(self, job: TranslationJob) -> None:
        urn = job.version_urn
        try:
            while not job.is_terminal:
                await self._sleep(self.next_delay_s(job))
                if job.is_terminal or self._jobs.get(urn) is not job:
                    break
                await self.poll(urn)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Polling of {urn} crashed")
            job.fail(TranslationFailure(urn, f"polling crashed: {e}", attempts=job.attempts), self._clock())

    def _forget(self, urn: str, job: TranslationJob) -> None:
        if self._jobs.get(urn) is job:
            del self._jobs[urn]
            self._backends.pop(urn, None)
        if job.item_id is not None and self._current_by_item.get(job.item_id) == urn:
            del self._current_by_item[job.item_id]
