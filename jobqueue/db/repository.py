"""
Job store for database operations.

Every write that depends on a job's state is a single conditional
UPDATE evaluated against the stored row, never against the in-memory copy.
A worker holding a stale copy of a job therefore cannot relock, reschedule
or resurrect a row that another worker has since changed or deleted.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import ColumnElement, and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from jobqueue.config import Settings, get_settings
from jobqueue.db.models import Job, as_db_time, db_time_now
from jobqueue.errors import InvalidPerformableError, JobNotFoundError
from jobqueue.observability.metrics import get_metrics
from jobqueue.payload.codec import default_codec
from jobqueue.payload.performable import (
    DelayProxy,
    call_hook,
    has_hook,
    is_performable,
)
from jobqueue.types.job import EnqueueOptions

logger = logging.getLogger(__name__)


def eligible_clause(
    worker_id: str,
    now: datetime,
    stale_before: datetime,
) -> ColumnElement[bool]:
    """
    SQL condition for a job a worker may lock right now.

    Args:
        worker_id: The worker asking.
        now: Current database time.
        stale_before: Locks taken before this instant have expired.
    """
    return and_(
        Job.failed_at.is_(None),
        Job.run_at <= now,
        or_(
            Job.locked_at.is_(None),
            Job.locked_at < stale_before,
            Job.locked_by == worker_id,
        ),
    )


def _job_id(job_or_id: Job | UUID) -> UUID:
    return job_or_id.id if isinstance(job_or_id, Job) else job_or_id


class JobStore:
    """
    Store for job records.

    Wraps one async session. Operations flush but never commit; the
    caller owns the transaction.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        """
        Initialize the store with a database session.

        Args:
            session: The async database session.
            settings: Queue settings. Defaults to the process-wide settings.
        """
        self._session = session
        self._settings = settings or get_settings()
        self._metrics = get_metrics()

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def settings(self) -> Settings:
        return self._settings

    async def create(self, payload_object: Any = None, **attrs: Any) -> Job:
        """
        Persist a new job.

        Args:
            payload_object: The performable. May be omitted when an encoded
                `payload` is passed instead.
            **attrs: Any other Job column.

        Returns:
            The new Job.

        Raises:
            InvalidPerformableError: If payload_object cannot be performed.
            SerializationError: If payload_object cannot be encoded.
        """
        if payload_object is not None or "payload" not in attrs:
            if not is_performable(payload_object):
                raise InvalidPerformableError(
                    "Cannot enqueue items which do not respond to perform"
                )
            attrs["payload"] = default_codec.encode(payload_object)

        if attrs.get("run_at") is None:
            attrs["run_at"] = db_time_now()
        for key in ("run_at", "locked_at", "failed_at"):
            if attrs.get(key) is not None:
                attrs[key] = as_db_time(attrs[key])
        if attrs.get("priority") is None:
            attrs["priority"] = self._settings.default_priority

        job = Job(**attrs)
        if payload_object is not None:
            job.__dict__["_payload_object"] = payload_object

        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": str(job.id), "priority": job.priority, "queue": job.queue},
        )
        return job

    async def enqueue(
        self,
        payload_object: Any = None,
        priority: int | None = None,
        run_at: datetime | None = None,
        queue: str | None = None,
    ) -> Job:
        """
        Enqueue a performable.

        Accepts either positional/keyword arguments or a single mapping of
        options (payload_object, priority, run_at, queue).

        Returns:
            The new Job.

        Raises:
            InvalidPerformableError: If the options are invalid or the
                object does not respond to perform.
        """
        try:
            if isinstance(payload_object, Mapping) and not is_performable(payload_object):
                options = EnqueueOptions.model_validate(dict(payload_object))
            else:
                options = EnqueueOptions(
                    payload_object=payload_object,
                    priority=priority,
                    run_at=run_at,
                    queue=queue,
                )
        except ValidationError as e:
            raise InvalidPerformableError(f"Invalid enqueue options: {e}") from e

        job = await self.create(
            payload_object=options.payload_object,
            priority=options.priority,
            run_at=options.run_at,
            queue=options.queue,
        )

        if has_hook(options.payload_object, "enqueue"):
            await call_hook(options.payload_object, "enqueue", job)

        self._metrics.record_job_enqueued(job.queue)
        return job

    def delay(self, target: Any, **options: Any) -> DelayProxy:
        """
        Enqueue method calls on target instead of running them.

        Example:
            job = await store.delay(story, priority=2).save()
        """
        return DelayProxy(self.enqueue, target, **options)

    async def find(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID, always re-reading the stored row.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, job_id: UUID) -> Job:
        """Get a job by ID or raise JobNotFoundError."""
        job = await self.find(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def reload(self, job: Job) -> Job:
        """Refresh a job from the database."""
        await self._session.refresh(job)
        return job

    async def delete(self, job_or_id: Job | UUID) -> bool:
        """
        Delete a job.

        Returns:
            True if a row was deleted.
        """
        stmt = delete(Job).where(Job.id == _job_id(job_or_id))
        result = await self._session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        return result.rowcount > 0

    async def count(self) -> int:
        """Count all jobs."""
        result = await self._session.execute(select(func.count()).select_from(Job))
        return result.scalar() or 0

    async def delete_all(self) -> int:
        """Delete every job. Returns the number of deleted rows."""
        result = await self._session.execute(
            delete(Job), execution_options={"synchronize_session": False}
        )
        return result.rowcount

    async def list_failed(self, limit: int = 100) -> Sequence[Job]:
        """List permanently failed jobs, most recent first."""
        stmt = (
            select(Job)
            .where(Job.failed_at.is_not(None))
            .order_by(Job.failed_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def select_eligible(
        self,
        worker_id: str,
        now: datetime,
        stale_before: datetime,
        limit: int,
        min_priority: int | None = None,
        max_priority: int | None = None,
        queues: Sequence[str] = (),
    ) -> Sequence[Job]:
        """
        Read jobs a worker may lock, highest priority first.

        Ordered by priority, then run_at, then id so that ties are broken
        the same way on every call.
        """
        filters = [eligible_clause(worker_id, now, stale_before)]
        if min_priority is not None:
            filters.append(Job.priority >= min_priority)
        if max_priority is not None:
            filters.append(Job.priority <= max_priority)
        if queues:
            filters.append(Job.queue.in_(list(queues)))

        stmt = (
            select(Job)
            .where(*filters)
            .order_by(Job.priority.asc(), Job.run_at.asc(), Job.id.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def claim(
        self,
        job_id: UUID,
        worker_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """
        Atomically lock a job for a worker.

        A single UPDATE that only matches while the stored row is still
        eligible for this worker.

        Returns:
            True if this worker now holds the lock.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id, eligible_clause(worker_id, now, stale_before))
            .values(locked_by=worker_id, locked_at=now, updated_at=now)
        )
        result = await self._session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        return result.rowcount == 1

    async def release(self, job_or_id: Job | UUID) -> bool:
        """Clear the lock on a job regardless of its owner."""
        stmt = (
            update(Job)
            .where(Job.id == _job_id(job_or_id))
            .values(locked_by=None, locked_at=None, updated_at=db_time_now())
        )
        result = await self._session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        if isinstance(job_or_id, Job):
            self.sync(job_or_id, locked_by=None, locked_at=None)
        return result.rowcount > 0

    async def release_all(self, worker_id: str) -> int:
        """Clear every lock held by a worker. Returns the number of rows."""
        stmt = (
            update(Job)
            .where(Job.locked_by == worker_id)
            .values(locked_by=None, locked_at=None, updated_at=db_time_now())
        )
        result = await self._session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        return result.rowcount

    async def record_attempt(self, job_id: UUID, last_error: str | None = None) -> int | None:
        """
        Count a failed attempt and release the lock.

        Returns:
            The new attempt count, or None if the job is gone or has
            already permanently failed.
        """
        values: dict[str, Any] = {
            "attempts": Job.attempts + 1,
            "locked_by": None,
            "locked_at": None,
            "updated_at": db_time_now(),
        }
        if last_error is not None:
            values["last_error"] = last_error

        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.failed_at.is_(None))
            .values(**values)
            .returning(Job.attempts)
        )
        result = await self._session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        return result.scalar_one_or_none()

    async def reschedule_at(self, job_id: UUID, run_at: datetime) -> bool:
        """Move a job's run_at, unless it has permanently failed."""
        return await self._update_active(job_id, run_at=as_db_time(run_at))

    async def mark_failed(self, job_id: UUID, now: datetime) -> bool:
        """Set failed_at, unless it is already set."""
        return await self._update_active(job_id, failed_at=now)

    async def update(self, job: Job, **values: Any) -> bool:
        """
        Administrative update of a job that has not permanently failed.

        Returns:
            True if the row was updated. The in-memory job is updated too.
        """
        updated = await self._update_active(job.id, **values)
        if updated:
            self.sync(job, **values)
        return updated

    async def _update_active(self, job_id: UUID, **values: Any) -> bool:
        values.setdefault("updated_at", db_time_now())
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.failed_at.is_(None))
            .values(**values)
        )
        result = await self._session.execute(
            stmt, execution_options={"synchronize_session": False}
        )
        return result.rowcount == 1

    @staticmethod
    def sync(job: Job, **values: Any) -> None:
        """
        Mirror values already written to the database onto an in-memory job
        without marking it dirty.
        """
        for key, value in values.items():
            set_committed_value(job, key, value)
