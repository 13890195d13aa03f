"""
Integration tests for the worker runtime.
"""

import asyncio
import os
import re
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import Settings
from jobqueue.constants import NO_MESSAGE, RescheduleOutcome
from jobqueue.db.models import db_time_now
from jobqueue.db.repository import JobStore
from jobqueue.worker import Worker
from sample_jobs import (
    BrokenHooksJob,
    CallbackJob,
    CustomRescheduleJob,
    ErrorJob,
    LongRunningJob,
    OnPermanentFailureJob,
    SimpleJob,
)


@pytest.fixture
def make_worker(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
):
    """Build workers on the test database."""

    def factory(**overrides) -> Worker:
        return Worker(
            worker_id="test-worker",
            settings=test_settings,
            session_factory=session_factory,
            **overrides,
        )

    return factory


@pytest.fixture
def worker(make_worker) -> Worker:
    return make_worker()


class TestWorkerSettings:
    """Tests for per-worker settings."""

    def test_overrides(self, make_worker):
        """Test that a worker can narrow the queue policy for itself."""
        worker = make_worker(min_priority=5, max_priority=10, queues=["mail"])

        assert worker.settings.min_priority == 5
        assert worker.settings.max_priority == 10
        assert worker.settings.queues == ["mail"]

    def test_default_name(self, test_settings: Settings):
        """Test that workers are named after host and process."""
        assert Worker(settings=test_settings).worker_id.endswith(f"-{os.getpid()}")


class TestRun:
    """Tests for Worker.run."""

    async def test_success_deletes_job(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a successful job runs once and is removed."""
        job = await store.enqueue(SimpleJob())
        await db_session.commit()

        assert await worker.run(job) is True

        assert SimpleJob.runs == 1
        assert await store.find(job.id) is None

    async def test_hooks_run_in_order(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test the full hook sequence through the worker."""
        job = await store.enqueue(CallbackJob())
        await db_session.commit()

        await worker.run(job)

        assert CallbackJob.messages == ["enqueue", "before", "perform", "success", "after"]

    async def test_fails_after_max_run_time(
        self,
        make_worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a job outliving max_run_time fails as expired."""
        worker = make_worker(max_run_time=timedelta(milliseconds=200))
        job = await store.create(LongRunningJob())
        await db_session.commit()

        assert await worker.run(job) is False

        stored = await store.get(job.id)
        assert re.search("expired", stored.last_error)
        assert stored.attempts == 1

    async def test_records_last_error_on_permanent_failure(
        self,
        make_worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test last_error and failed_at with destroy_failed_jobs off and one attempt."""
        worker = make_worker(destroy_failed_jobs=False, max_attempts=1)
        job = await store.enqueue(ErrorJob())
        await db_session.commit()

        await worker.run(job)

        stored = await store.get(job.id)
        assert "did not work" in stored.last_error
        assert stored.attempts == 1
        assert stored.failed_at is not None

    async def test_reschedules_after_failing(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a failed job keeps its traceback and is retried soon."""
        job = await store.enqueue(ErrorJob())
        await db_session.commit()

        assert await worker.run(job) is False

        stored = await store.get(job.id)
        assert "did not work" in stored.last_error
        assert re.search(r'sample_jobs\.py", line \d+, in perform', stored.last_error)
        assert stored.attempts == 1
        now = db_time_now()
        assert now - timedelta(minutes=10) < stored.run_at < now + timedelta(minutes=10)

    async def test_reschedules_at_performable_time(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that the performable's own reschedule time is used."""
        job = await store.enqueue(CustomRescheduleJob(timedelta(minutes=99)))
        await db_session.commit()

        await worker.run(job)

        stored = await store.get(job.id)
        expected = db_time_now() + timedelta(minutes=99)
        assert abs((expected - stored.run_at).total_seconds()) < 5

    async def test_error_without_message(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
        monkeypatch,
    ):
        """Test that an error without a message is still recorded."""

        async def invoke_job(job):
            raise RuntimeError()

        monkeypatch.setattr("jobqueue.worker.main.invoke_job", invoke_job)
        job = await store.enqueue(ErrorJob())
        await db_session.commit()

        assert await worker.run(job) is False

        stored = await store.get(job.id)
        assert stored.last_error.startswith(NO_MESSAGE)
        assert stored.attempts == 1

    async def test_error_with_unprintable_message(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
        monkeypatch,
    ):
        """Test that an error whose message cannot be rendered is still recorded."""

        class Unprintable(Exception):
            def __str__(self):
                raise ValueError("no")

        async def invoke_job(job):
            raise Unprintable()

        monkeypatch.setattr("jobqueue.worker.main.invoke_job", invoke_job)
        job = await store.enqueue(ErrorJob())
        await db_session.commit()

        assert await worker.run(job) is False
        assert (await store.get(job.id)).last_error.startswith(NO_MESSAGE)

    async def test_unloadable_payload_is_retried(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a payload that fails to load counts as a failed attempt."""
        job = await store.create(payload='{"type": "Gone", "kind": "object", "attributes": {}}')
        await db_session.commit()

        assert await worker.run(job) is False

        stored = await store.get(job.id)
        assert "Job failed to load" in stored.last_error
        assert stored.attempts == 1


class TestReschedule:
    """Tests for Worker.reschedule."""

    async def test_failure_hook_through_worker(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
        test_settings: Settings,
    ):
        """Test that repeated reschedules end in one failure hook call."""
        job = await store.create(OnPermanentFailureJob())
        await db_session.commit()

        for _ in range(test_settings.max_attempts - 1):
            assert await worker.reschedule(job) is RescheduleOutcome.RESCHEDULED
        assert await worker.reschedule(job) is RescheduleOutcome.DESTROYED

        assert job.payload_object.failures == 1
        assert await store.find(job.id) is None


class TestHookErrors:
    """Tests for error and failure hooks that raise inside the worker."""

    async def test_error_hook_error_is_a_failed_attempt(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a raising error hook is recorded and the job retried."""
        job = await store.enqueue(BrokenHooksJob())
        await db_session.commit()

        assert await worker.reserve_and_run_one_job() is False

        stored = await store.get(job.id)
        assert "error hook broke" in stored.last_error
        assert stored.attempts == 1
        assert stored.locked_by is None
        assert stored.failed_at is None
        assert stored.run_at > db_time_now()

    async def test_failure_hook_error_still_fails_job(
        self,
        make_worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a raising failure hook neither loops the job nor loses the attempt."""
        worker = make_worker(max_attempts=1, destroy_failed_jobs=False)
        job = await store.enqueue(BrokenHooksJob())
        await db_session.commit()

        assert await worker.reserve_and_run_one_job() is False
        assert await worker.reserve_and_run_one_job() is None

        assert BrokenHooksJob.runs == 1
        stored = await store.get(job.id)
        assert stored.attempts == 1
        assert stored.failed_at is not None
        assert stored.locked_by is None

    async def test_failure_hook_error_still_destroys_job(
        self,
        make_worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a raising failure hook does not keep a destroyed job around."""
        worker = make_worker(max_attempts=1, destroy_failed_jobs=True)
        job = await store.enqueue(BrokenHooksJob())
        await db_session.commit()

        assert await worker.work_off() == (0, 1)

        assert BrokenHooksJob.runs == 1
        assert await store.find(job.id) is None

    async def test_reschedule_reports_outcome(
        self,
        make_worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that Worker.reschedule returns the outcome instead of raising."""
        worker = make_worker(max_attempts=1, destroy_failed_jobs=False)
        job = await store.create(BrokenHooksJob())
        await db_session.commit()

        assert await worker.reschedule(job, "did not work") is RescheduleOutcome.FAILED
        assert (await store.get(job.id)).failed_at is not None


class TestWorkOff:
    """Tests for reserve_and_run_one_job, work_off and the worker loop."""

    async def test_empty_queue(self, worker: Worker):
        """Test that nothing happens without jobs."""
        assert await worker.reserve_and_run_one_job() is None
        assert await worker.work_off() == (0, 0)

    async def test_counts_successes_and_failures(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that work_off reports what it did."""
        await store.enqueue(SimpleJob())
        await store.enqueue(SimpleJob())
        await store.enqueue(ErrorJob())
        await db_session.commit()

        assert await worker.work_off() == (2, 1)
        assert SimpleJob.runs == 2
        assert await store.count() == 1

    async def test_limit(self, worker: Worker, store: JobStore, db_session: AsyncSession):
        """Test that work_off stops after num jobs."""
        for _ in range(3):
            await store.enqueue(SimpleJob())
        await db_session.commit()

        assert await worker.work_off(2) == (2, 0)
        assert await store.count() == 1

    async def test_zero_runs_nothing(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that work_off(0) is not mistaken for the default batch size."""
        await store.enqueue(SimpleJob())
        await db_session.commit()

        assert await worker.work_off(0) == (0, 0)
        assert SimpleJob.runs == 0
        assert await store.count() == 1

    async def test_respects_priority_window(
        self,
        make_worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that a worker only runs jobs inside its priority window."""
        await store.enqueue(SimpleJob(), 1)
        await store.enqueue(SimpleJob(), 10)
        await db_session.commit()

        assert await make_worker(max_priority=5).work_off() == (1, 0)
        assert await store.count() == 1

    async def test_start_exits_on_complete(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that the loop drains the queue and returns."""
        for _ in range(3):
            await store.enqueue(SimpleJob())
        await db_session.commit()

        await asyncio.wait_for(worker.start(exit_on_complete=True), timeout=10)

        assert SimpleJob.runs == 3
        assert await store.count() == 0

    async def test_start_clears_own_locks(
        self,
        worker: Worker,
        store: JobStore,
        db_session: AsyncSession,
    ):
        """Test that the loop releases this worker's locks when it ends."""
        job = await store.create(
            SimpleJob(),
            run_at=db_time_now() + timedelta(hours=1),
            locked_by=worker.worker_id,
            locked_at=db_time_now(),
        )
        other = await store.create(SimpleJob(), locked_by="other-worker", locked_at=db_time_now())
        await db_session.commit()

        await asyncio.wait_for(worker.start(exit_on_complete=True), timeout=10)

        assert (await store.get(job.id)).locked_by is None
        assert (await store.get(other.id)).locked_by == "other-worker"

    async def test_stop(self, worker: Worker):
        """Test that stop ends a running loop."""
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)

        await worker.stop()

        await asyncio.wait_for(task, timeout=5)
        assert task.done()
