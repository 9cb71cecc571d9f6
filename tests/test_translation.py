"""
Tests for translation jobs and the derivative translation tracker.

Time is driven by FakeClock: its sleep advances the clock instantly, so a
full polling schedule runs in a few event loop iterations.
"""

import asyncio

import pytest
import pytest_asyncio

from bimsync.config.settings import TranslationSettings
from bimsync.exceptions import AuthError, TimeoutError_, TranslationFailure, TransientNetworkError
from bimsync.translation import DerivativeTranslationTracker, JobState, TranslationJob
from fakes import FakeBackend, failed, manifest, never_sleep, processing, settle, succeeded, wait_until

URN = "dXJuOnYx"


@pytest.fixture
def settings():
    return TranslationSettings(initial_backoff_ms=1000, max_backoff_ms=4000, max_attempts=5, jitter=0.0)


@pytest_asyncio.fixture
async def tracker(settings, clock):
    tracker = DerivativeTranslationTracker(settings, clock=clock, sleep=clock.sleep)
    yield tracker
    tracker.dispose()


@pytest_asyncio.fixture
async def idle_tracker(settings):
    """Tracker whose poll loop never wakes up; tests poll explicitly."""
    tracker = DerivativeTranslationTracker(settings, sleep=never_sleep)
    yield tracker
    tracker.dispose()


async def finished(job: TranslationJob) -> TranslationJob:
    return await asyncio.wait_for(job.wait(), timeout=5)


class TestTranslationJob:
    """Tests for the job state machine."""

    def test_initial_state(self):
        job = TranslationJob(version_urn=URN)
        assert job.state == JobState.SUBMITTED
        assert not job.is_terminal
        assert job.attempts == 0

    def test_mark_polled(self):
        job = TranslationJob(version_urn=URN)
        job.mark_polled(10.0)
        assert job.state == JobState.POLLING
        assert job.attempts == 1
        assert job.last_polled_at == 10.0

    def test_terminal_state_is_final(self):
        job = TranslationJob(version_urn=URN)
        job.succeed(manifest(URN), 1.0)
        job.fail(TranslationFailure(URN, "late"), 2.0)
        job.cancel("late")
        assert job.state == JobState.SUCCEEDED
        assert job.manifest.derivative_count == 2
        assert job.error is None
        assert job.completed_at == 1.0

    def test_summary(self):
        job = TranslationJob(version_urn=URN, item_id="p/i", submitted_at=0.0)
        job.time_out(TimeoutError_(URN, attempts=3, elapsed_s=9.0), 9.0)
        summary = job.get_summary()
        assert summary["state"] == "timed_out"
        assert summary["error_type"] == "TimeoutError_"
        assert summary["derivative_count"] is None
        assert job.elapsed_s(9.0) == 9.0


class TestSubmit:
    """Tests for submitting translations."""

    @pytest.mark.asyncio
    async def test_already_translated_needs_no_polls(self, tracker):
        backend = FakeBackend(submit=succeeded(URN, count=3))
        job = await tracker.submit(URN, backend)
        assert job.state == JobState.SUCCEEDED
        assert job.attempts == 0
        assert job.manifest.derivative_count == 3
        assert backend.status_calls == []
        assert not tracker.is_polling(URN)

    @pytest.mark.asyncio
    async def test_resubmit_returns_same_job(self, idle_tracker):
        backend = FakeBackend()
        first = await idle_tracker.submit(URN, backend)
        second = await idle_tracker.submit(URN, backend)
        assert first is second
        assert backend.submit_calls == [URN]
        assert idle_tracker.is_polling(URN)

    @pytest.mark.asyncio
    async def test_resubmit_after_terminal_starts_new_job(self, tracker):
        backend = FakeBackend(submit=succeeded(URN))
        first = await tracker.submit(URN, backend)
        second = await tracker.submit(URN, backend)
        assert first is not second
        assert len(backend.submit_calls) == 2

    @pytest.mark.asyncio
    async def test_rejected_job_is_failed(self, tracker):
        backend = FakeBackend(submit=TranslationFailure(URN, "job rejected (400)", upstream_message="bad urn"))
        job = await tracker.submit(URN, backend)
        assert job.state == JobState.FAILED
        assert job.error.upstream_message == "bad urn"
        assert tracker.get(URN) is job

    @pytest.mark.asyncio
    async def test_failed_status_at_submit(self, tracker):
        job = await tracker.submit(URN, FakeBackend(submit=failed("Unsupported file format")))
        assert job.state == JobState.FAILED
        assert isinstance(job.error, TranslationFailure)
        assert job.error.upstream_message == "Unsupported file format"

    @pytest.mark.asyncio
    async def test_auth_error_at_submit_raises(self, tracker):
        backend = FakeBackend(submit=AuthError("expired", status=401))
        with pytest.raises(AuthError):
            await tracker.submit(URN, backend)
        assert tracker.get(URN) is None
        assert backend.status_calls == []


class TestPolling:
    """Tests for bounded, backed-off polling."""

    @pytest.mark.asyncio
    async def test_times_out_after_max_attempts(self, tracker, clock):
        backend = FakeBackend(statuses=[processing()], tracker=tracker)
        job = await finished(await tracker.submit(URN, backend))

        assert job.state == JobState.TIMED_OUT
        assert job.attempts == 5
        assert len(backend.status_calls) == 5
        assert isinstance(job.error, TimeoutError_)
        assert job.error.attempts == 5
        assert job.error.upstream_message == "10% complete"

        polled_at = [at for at, _ in backend.observed]
        assert all(later > earlier for earlier, later in zip(polled_at, polled_at[1:]))

    @pytest.mark.asyncio
    async def test_backoff_doubles_up_to_ceiling(self, tracker, clock):
        backend = FakeBackend(tracker=tracker)
        await finished(await tracker.submit(URN, backend))

        assert [backoff for _, backoff in backend.observed] == [1000, 2000, 4000, 4000, 4000]
        assert clock.sleeps == [1.0, 2.0, 4.0, 4.0, 4.0]

    @pytest.mark.asyncio
    async def test_elapsed_ceiling(self, clock):
        settings = TranslationSettings(initial_backoff_ms=1000, max_backoff_ms=4000, max_elapsed_s=5, jitter=0.0)
        tracker = DerivativeTranslationTracker(settings, clock=clock, sleep=clock.sleep)
        job = await finished(await tracker.submit(URN, FakeBackend()))
        assert job.state == JobState.TIMED_OUT
        assert job.attempts == 3
        assert job.error.elapsed_s == 7.0

    @pytest.mark.asyncio
    async def test_success_after_polls(self, tracker):
        backend = FakeBackend(statuses=[processing(), processing(), succeeded(URN)])
        job = await finished(await tracker.submit(URN, backend))
        assert job.state == JobState.SUCCEEDED
        assert job.attempts == 3
        assert job.manifest.urn == URN

    @pytest.mark.asyncio
    async def test_failure_carries_upstream_message(self, tracker):
        backend = FakeBackend(statuses=[processing(), failed("Unsupported file format")])
        job = await finished(await tracker.submit(URN, backend))
        assert job.state == JobState.FAILED
        assert isinstance(job.error, TranslationFailure)
        assert job.error.attempts == 2
        assert job.error.upstream_message == "Unsupported file format"

    @pytest.mark.asyncio
    async def test_transient_error_keeps_polling(self, tracker):
        backend = FakeBackend(statuses=[TransientNetworkError("503"), succeeded(URN)])
        job = await finished(await tracker.submit(URN, backend))
        assert job.state == JobState.SUCCEEDED
        assert job.attempts == 2

    @pytest.mark.asyncio
    async def test_auth_error_during_poll_fails_job(self, tracker):
        backend = FakeBackend(statuses=[AuthError("token expired", status=401)])
        job = await finished(await tracker.submit(URN, backend))
        assert job.state == JobState.FAILED
        assert isinstance(job.error, AuthError)
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_job(self, tracker):
        backend = FakeBackend(statuses=[RuntimeError("boom")])
        job = await finished(await tracker.submit(URN, backend))
        assert job.state == JobState.FAILED
        assert "polling crashed" in str(job.error)

    @pytest.mark.asyncio
    async def test_jobs_do_not_serialize(self, tracker):
        blocked = FakeBackend()
        blocked.gate = asyncio.Event()
        quick = FakeBackend(statuses=[succeeded("urn-2")])

        slow_job = await tracker.submit("urn-1", blocked)
        quick_job = await finished(await tracker.submit("urn-2", quick))

        assert quick_job.state == JobState.SUCCEEDED
        assert slow_job.state == JobState.POLLING
        blocked.gate.set()
        await settle()

    @pytest.mark.asyncio
    async def test_poll_unknown_urn(self, tracker):
        with pytest.raises(KeyError):
            await tracker.poll("nope")

    def test_jittered_delay_is_capped(self):
        settings = TranslationSettings(initial_backoff_ms=1000, max_backoff_ms=4000, jitter=0.5)
        tracker = DerivativeTranslationTracker(settings)
        job = TranslationJob(version_urn=URN, backoff_ms=4000)
        low = TranslationJob(version_urn=URN, backoff_ms=1000)
        for _ in range(50):
            assert 2.0 <= tracker.next_delay_s(job) <= 4.0
            assert 0.5 <= tracker.next_delay_s(low) <= 1.5


class TestCancellation:
    """Tests for cancel, supersession and dispose."""

    @pytest.mark.asyncio
    async def test_single_in_flight_poll_and_cancel_discards_result(self, tracker):
        backend = FakeBackend()
        backend.gate = asyncio.Event()
        job = await tracker.submit(URN, backend)
        await wait_until(lambda: len(backend.status_calls) == 1)

        # A second poll while one is in flight is skipped
        await tracker.poll(URN)
        assert len(backend.status_calls) == 1
        assert job.attempts == 1

        assert tracker.cancel(URN, reason="user cancelled") is True
        backend.statuses = [succeeded(URN)]
        backend.gate.set()
        await settle()

        assert job.state == JobState.CANCELLED
        assert job.manifest is None
        assert job.last_message == "user cancelled"
        assert len(backend.status_calls) == 1

    @pytest.mark.asyncio
    async def test_cancel_terminal_is_noop(self, tracker):
        await tracker.submit(URN, FakeBackend(submit=succeeded(URN)))
        assert tracker.cancel(URN) is False
        assert tracker.cancel("unknown") is False

    @pytest.mark.asyncio
    async def test_newer_version_supersedes(self, idle_tracker):
        backend = FakeBackend()
        old = await idle_tracker.submit("urn-v1", backend, item_id="p1/item")
        new = await idle_tracker.submit("urn-v2", backend, item_id="p1/item")

        assert old.state == JobState.CANCELLED
        assert "superseded by urn-v2" in old.last_message
        assert not idle_tracker.is_polling("urn-v1")
        assert new.state == JobState.SUBMITTED
        assert idle_tracker.is_polling("urn-v2")

    @pytest.mark.asyncio
    async def test_dispose(self, idle_tracker):
        backend = FakeBackend()
        jobs = [await idle_tracker.submit(urn, backend) for urn in ("a", "b")]
        idle_tracker.dispose()
        assert idle_tracker.jobs == []
        assert all(job.state == JobState.CANCELLED for job in jobs)
        assert not idle_tracker.is_polling("a")
