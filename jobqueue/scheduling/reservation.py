"""
Job reservation.

Workers never coordinate with each other directly. Selection order comes
from a plain query; ownership is decided only by the conditional UPDATE in
JobStore.claim, so when two workers race for the same job exactly one
wins and the other moves on to its next candidate.
"""

import logging
from collections.abc import Sequence
from datetime import timedelta

from jobqueue.config import Settings
from jobqueue.db.models import Job, db_time_now
from jobqueue.db.repository import JobStore
from jobqueue.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


def as_max_run_time(value: timedelta | float | int | None, default: timedelta) -> timedelta:
    """Normalize a max run time given as a timedelta or seconds."""
    if value is None:
        return default
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


class Reservation:
    """
    Reservation protocol on top of a JobStore.

    Implements:
    - find_available: eligible jobs in priority order
    - reserve: lock the best candidate, falling through on contention
    - lock_exclusively: the atomic claim of one job
    - unlock / clear_locks
    """

    def __init__(self, store: JobStore, settings: Settings | None = None):
        self._store = store
        self._settings = settings or store.settings
        self._metrics = get_metrics()

    async def find_available(
        self,
        worker_id: str,
        limit: int | None = None,
        max_run_time: timedelta | float | None = None,
    ) -> Sequence[Job]:
        """
        Find jobs this worker could lock right now.

        Args:
            worker_id: The worker identifier.
            limit: Maximum number of jobs. Defaults to read_ahead.
            max_run_time: Locks older than this are considered abandoned.

        Returns:
            Jobs ordered by priority, then run_at.
        """
        now = db_time_now()
        max_run_time = as_max_run_time(max_run_time, self._settings.max_run_time)
        return await self._store.select_eligible(
            worker_id=worker_id,
            now=now,
            stale_before=now - max_run_time,
            limit=self._settings.read_ahead if limit is None else limit,
            min_priority=self._settings.min_priority,
            max_priority=self._settings.max_priority,
            queues=self._settings.queues,
        )

    async def reserve(
        self,
        worker_id: str,
        max_run_time: timedelta | float | None = None,
    ) -> Job | None:
        """
        Lock and return the highest priority job available to this worker.

        Tries at most read_ahead candidates.

        Returns:
            The locked Job, or None if nothing could be locked.
        """
        candidates = await self.find_available(
            worker_id, self._settings.read_ahead, max_run_time
        )
        for job in candidates:
            if await self.lock_exclusively(job, max_run_time, worker_id):
                logger.debug(
                    "Reserved job",
                    extra={"job_id": str(job.id), "worker_id": worker_id},
                )
                return job
            self._metrics.record_lock_contention(worker_id)
            logger.debug(
                "Job locked by another worker, trying next candidate",
                extra={"job_id": str(job.id), "worker_id": worker_id},
            )
        return None

    async def lock_exclusively(
        self,
        job: Job,
        max_run_time: timedelta | float | None,
        worker_id: str,
    ) -> bool:
        """
        Atomically take the lock on a job.

        Succeeds only if, in the database, the job still exists, is due,
        has not failed, and is unlocked, locked longer than max_run_time
        ago, or already locked by this worker.

        Returns:
            True if this worker now holds the lock.
        """
        now = db_time_now()
        max_run_time = as_max_run_time(max_run_time, self._settings.max_run_time)
        claimed = await self._store.claim(job.id, worker_id, now, now - max_run_time)
        if claimed:
            self._store.sync(job, locked_by=worker_id, locked_at=now)
            self._metrics.record_lock_acquired(worker_id)
        return claimed

    async def unlock(self, job: Job) -> None:
        """Clear the lock on a job."""
        await self._store.release(job)

    async def clear_locks(self, worker_id: str) -> int:
        """
        Release every lock held by a worker.

        Returns:
            Number of jobs unlocked.
        """
        count = await self._store.release_all(worker_id)
        if count:
            self._metrics.record_locks_cleared(worker_id, count)
            logger.info(
                f"Cleared {count} locks",
                extra={"worker_id": worker_id},
            )
        return count
