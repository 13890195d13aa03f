"""
Retry and backoff policy for failed jobs.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from jobqueue.config import Settings
from jobqueue.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_EXPONENT,
    RescheduleOutcome,
)
from jobqueue.db.models import Job, as_db_time, db_time_now
from jobqueue.db.repository import JobStore
from jobqueue.errors import DeserializationError, FailureHookError
from jobqueue.payload.performable import call_hook, has_hook

logger = logging.getLogger(__name__)


def backoff_delay(
    attempts: int,
    exponent: int = DEFAULT_BACKOFF_EXPONENT,
    base_seconds: int = DEFAULT_BACKOFF_BASE_SECONDS,
) -> timedelta:
    """
    Delay before the next attempt: attempts ** exponent + base_seconds.

    >>> backoff_delay(1)
    datetime.timedelta(seconds=6)
    >>> backoff_delay(3)
    datetime.timedelta(seconds=86)
    """
    return timedelta(seconds=attempts**exponent + base_seconds)


class RetryPolicy:
    """
    Decides what happens to a job after a failed attempt.

    Below max_attempts the job is pushed back by the backoff curve (or
    the time its performable asks for). At max_attempts it fails
    permanently: the failure hook runs, then the job is either destroyed
    or marked with failed_at depending on destroy_failed_jobs.
    """

    def __init__(self, store: JobStore, settings: Settings | None = None):
        self._store = store
        self._settings = settings or store.settings

    def next_run_at(self, performable: Any, now: datetime, attempts: int) -> datetime:
        """When a job with this many failed attempts should run again."""
        if performable is not None and has_hook(performable, "reschedule_at"):
            return as_db_time(performable.reschedule_at(now, attempts))
        return now + backoff_delay(
            attempts,
            exponent=self._settings.backoff_exponent,
            base_seconds=self._settings.backoff_base_seconds,
        )

    async def reschedule(
        self,
        job: Job,
        error: str | None = None,
        time: datetime | None = None,
    ) -> RescheduleOutcome:
        """
        Record a failed attempt and reschedule or permanently fail the job.

        Args:
            job: The job that failed.
            error: Description of the failure, stored in last_error.
            time: Explicit next run time, overriding everything else.

        Returns:
            What happened to the job.

        Raises:
            FailureHookError: If the failure hook raised. The job has
                been destroyed or marked failed regardless.
        """
        attempts = await self._store.record_attempt(job.id, error)
        if attempts is None:
            logger.warning(
                "Job vanished or already failed before it could be rescheduled",
                extra={"job_id": str(job.id)},
            )
            return RescheduleOutcome.MISSING

        self._store.sync(job, attempts=attempts, locked_by=None, locked_at=None)
        if error is not None:
            self._store.sync(job, last_error=error)

        performable = self._payload_object(job)
        now = db_time_now()

        if attempts < self._settings.max_attempts:
            run_at = as_db_time(time) if time is not None else self.next_run_at(
                performable, now, attempts
            )
            await self._store.reschedule_at(job.id, run_at)
            self._store.sync(job, run_at=run_at)
            logger.info(
                "Job rescheduled",
                extra={
                    "job_id": str(job.id),
                    "attempts": attempts,
                    "run_at": run_at.isoformat(),
                },
            )
            return RescheduleOutcome.RESCHEDULED

        logger.warning(
            f"Job failed permanently after {attempts} attempts",
            extra={"job_id": str(job.id), "job_name": job.name},
        )

        hook_error = None
        if performable is not None and has_hook(performable, "failure"):
            try:
                await call_hook(performable, "failure", job)
            except Exception as e:
                hook_error = e

        if self._settings.destroy_failed_jobs:
            await self._store.delete(job)
            logger.info("Destroyed failed job", extra={"job_id": str(job.id)})
            outcome = RescheduleOutcome.DESTROYED
        else:
            await self._store.mark_failed(job.id, now)
            self._store.sync(job, failed_at=now)
            outcome = RescheduleOutcome.FAILED

        if hook_error is not None:
            raise FailureHookError(job.id, outcome) from hook_error
        return outcome

    @staticmethod
    def _payload_object(job: Job) -> Any:
        try:
            return job.payload_object
        except DeserializationError as e:
            logger.warning(
                "Cannot load payload, skipping performable hooks",
                extra={"job_id": str(job.id), "error": str(e)},
            )
            return None
