"""
Worker process for executing jobs.

The worker reserves one job at a time, invokes it under its max run time,
deletes it on success and hands failures to the retry policy.
"""

import asyncio
import logging
import os
import signal
import time
import traceback
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import Settings, get_settings
from jobqueue.constants import (
    NO_MESSAGE,
    SPAN_INVOKE_JOB,
    SPAN_RESERVE_JOB,
    SPAN_RESCHEDULE_JOB,
    RescheduleOutcome,
)
from jobqueue.db.connection import close_db, get_session_context, init_db
from jobqueue.db.models import Job
from jobqueue.db.repository import JobStore
from jobqueue.errors import FailureHookError, MaxRunTimeExceededError
from jobqueue.observability.logging import bind_context, clear_context, setup_logging
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.scheduling.backoff import RetryPolicy
from jobqueue.scheduling.reservation import Reservation
from jobqueue.worker.invocation import invoke_job

logger = logging.getLogger(__name__)


def error_message(exc: BaseException) -> str:
    """Message of an exception, or a placeholder when it has none."""
    try:
        message = str(exc)
    except Exception:
        message = ""
    return message or NO_MESSAGE


def format_error(exc: BaseException) -> str:
    """Message and backtrace of an exception, as stored in last_error."""
    return f"{error_message(exc)}\n{''.join(traceback.format_exception(exc))}"


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Lock acquisition through a conditional UPDATE, safe across processes
    - Locks expire after max_run_time, so crashed workers need no cleanup
    - Cooperative max run time enforced with asyncio.timeout
    - Retry with backoff and permanent failure handling
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        worker_id: str | None = None,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        **overrides: Any,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            settings: Settings to use. Defaults to the global settings.
            session_factory: Session factory. Defaults to the global one.
            **overrides: Settings fields to override for this worker,
                e.g. min_priority, max_priority or queues.
        """
        settings = settings or get_settings()
        if overrides:
            settings = settings.model_copy(update=overrides)

        self.worker_id = worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.settings = settings
        self.batch_size = settings.worker_batch_size
        self.sleep_delay = settings.worker_sleep_delay_seconds

        self._session_factory = session_factory
        self._running = False
        self._started = False
        self._metrics = get_metrics()

    @property
    def max_run_time(self) -> timedelta:
        return self.settings.max_run_time

    def _session(self):
        return get_session_context(self._session_factory)

    async def run(self, job: Job) -> bool:
        """
        Run a reserved job.

        Args:
            job: A job locked by this worker.

        Returns:
            True if the job succeeded and was deleted, False if it failed.
        """
        start_time = time.monotonic()

        try:
            with get_tracer().start_as_current_span(SPAN_INVOKE_JOB) as span:
                span.set_attribute("job_id", str(job.id))
                span.set_attribute("attempts", job.attempts)
                span.set_attribute("worker_id", self.worker_id)
                await self._invoke_with_timeout(job)
        except Exception as e:
            outcome = await self.handle_failed_job(job, e)
            self._metrics.record_job_completed(
                status=outcome.value,
                duration_seconds=time.monotonic() - start_time,
            )
            return False

        async with self._session() as session:
            await JobStore(session, self.settings).delete(job)

        duration = time.monotonic() - start_time
        logger.info(
            f"Job {job.name} completed after {duration:.4f}s",
            extra={"job_id": str(job.id), "worker_id": self.worker_id},
        )
        self._metrics.record_job_completed(status="succeeded", duration_seconds=duration)
        return True

    async def _invoke_with_timeout(self, job: Job) -> None:
        seconds = self.max_run_time.total_seconds()
        deadline = asyncio.timeout(seconds)
        try:
            async with deadline:
                await invoke_job(job)
        except TimeoutError as exc:
            if deadline.expired():
                raise MaxRunTimeExceededError(self.max_run_time) from exc
            raise

    async def handle_failed_job(self, job: Job, exc: BaseException) -> RescheduleOutcome:
        """
        Log a failed attempt and reschedule the job.

        Returns:
            What happened to the job.
        """
        logger.error(
            f"Job {job.name} failed with {type(exc).__name__}: {error_message(exc)} "
            f"- {job.attempts + 1} failed attempts",
            extra={"job_id": str(job.id), "worker_id": self.worker_id},
        )
        return await self.reschedule(job, format_error(exc))

    async def reschedule(
        self,
        job: Job,
        error: str | None = None,
        time: datetime | None = None,
    ) -> RescheduleOutcome:
        """
        Record a failed attempt on a job and retry or permanently fail it.

        Args:
            job: The job that failed.
            error: Stored in last_error.
            time: Explicit next run time.

        Returns:
            What happened to the job.
        """
        with get_tracer().start_as_current_span(SPAN_RESCHEDULE_JOB) as span:
            span.set_attribute("job_id", str(job.id))
            async with self._session() as session:
                policy = RetryPolicy(JobStore(session, self.settings), self.settings)
                try:
                    outcome = await policy.reschedule(job, error, time)
                except FailureHookError as e:
                    logger.error(
                        f"Failure hook of job {job.name} raised "
                        f"{type(e.__cause__).__name__}: {error_message(e.__cause__)}",
                        exc_info=e.__cause__,
                        extra={"job_id": str(job.id), "worker_id": self.worker_id},
                    )
                    outcome = e.outcome
            span.set_attribute("outcome", outcome.value)
        return outcome

    async def reserve_and_run_one_job(self) -> bool | None:
        """
        Reserve the next available job and run it.

        Returns:
            True on success, False on failure, None if no job was available.
        """
        with get_tracer().start_as_current_span(SPAN_RESERVE_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)
            async with self._session() as session:
                reservation = Reservation(JobStore(session, self.settings), self.settings)
                job = await reservation.reserve(self.worker_id, self.max_run_time)

        if job is None:
            return None
        return await self.run(job)

    async def work_off(self, num: int | None = None) -> tuple[int, int]:
        """
        Run up to num jobs, stopping early when the queue is empty.

        Returns:
            (succeeded, failed) counts.
        """
        if num is None:
            num = self.batch_size
        succeeded = failed = 0

        for _ in range(num):
            result = await self.reserve_and_run_one_job()
            if result is None:
                break
            if result:
                succeeded += 1
            else:
                failed += 1
            if self._stopping:
                break

        return succeeded, failed

    @property
    def _stopping(self) -> bool:
        return self._started and not self._running

    async def clear_locks(self) -> int:
        """Release every lock held by this worker."""
        async with self._session() as session:
            reservation = Reservation(JobStore(session, self.settings), self.settings)
            return await reservation.clear_locks(self.worker_id)

    async def start(self, exit_on_complete: bool = False) -> None:
        """
        Start the worker loop.

        Args:
            exit_on_complete: Return once the queue is empty instead of
                sleeping and polling again.
        """
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "batch_size": self.batch_size},
        )
        bind_context(worker_id=self.worker_id)

        self._running = True
        self._started = True

        try:
            while self._running:
                try:
                    started_at = time.monotonic()
                    succeeded, failed = await self.work_off()
                    count = succeeded + failed

                    if count:
                        elapsed = max(time.monotonic() - started_at, 1e-9)
                        logger.info(
                            f"{count} jobs processed at {count / elapsed:.4f} j/s, "
                            f"{failed} failed",
                            extra={"worker_id": self.worker_id},
                        )
                    elif exit_on_complete:
                        logger.info("No more jobs available, exiting")
                        break
                    elif self._running:
                        await asyncio.sleep(self.sleep_delay)

                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id},
                    )
                    await asyncio.sleep(self.sleep_delay)
        finally:
            self._running = False
            self._started = False
            await self.clear_locks()
            logger.info("Worker stopped", extra={"worker_id": self.worker_id})
            clear_context()

    async def stop(self) -> None:
        """Stop the worker after the job in progress."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False


async def run_async(worker: Worker | None = None) -> None:
    """Run the worker asynchronously."""
    setup_logging()
    await init_db()

    worker = worker or Worker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
