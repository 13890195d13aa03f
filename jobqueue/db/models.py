"""
SQLAlchemy database models.
Defines the Job table.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.errors import DeserializationError
from jobqueue.payload.codec import default_codec
from jobqueue.payload.performable import SupportsDisplayName


def db_time_now() -> datetime:
    """Current time as stored in the jobs table (naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_db_time(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form the table stores."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of deferred work.

    This is the authoritative source of truth for job state.

    Key invariants:
    - locked_by and locked_at are either both set or both null
    - a job is eligible for a worker when failed_at is null, run_at has
      passed and it is unlocked, its lock has outlived max_run_time, or
      the lock belongs to that worker
    - failed_at is terminal
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Encoded performable
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Scheduling (lower priority value runs first)
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    run_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=db_time_now,
    )
    queue: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Lock management
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Failure tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=db_time_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=db_time_now,
        server_default=func.now(),
        onupdate=db_time_now,
    )

    __table_args__ = (
        # Index for efficient queue polling
        Index("ix_jobs_priority_run_at", "priority", "run_at"),
    )

    @property
    def payload_object(self) -> Any:
        """
        The decoded performable.

        Decoded once and cached on the instance.

        Raises:
            DeserializationError: If the payload cannot be loaded.
        """
        cached = self.__dict__.get("_payload_object")
        if cached is None:
            cached = default_codec.decode(self.payload)
            self.__dict__["_payload_object"] = cached
        return cached

    @payload_object.setter
    def payload_object(self, performable: Any) -> None:
        self.payload = default_codec.encode(performable)
        self.__dict__["_payload_object"] = performable

    @property
    def name(self) -> str:
        """Human readable name of the work this job performs."""
        try:
            performable = self.payload_object
        except DeserializationError:
            return default_codec.type_name(self.payload) or "unknown"
        if isinstance(performable, SupportsDisplayName):
            return performable.display_name
        return type(performable).__name__

    @property
    def is_locked(self) -> bool:
        """Check if some worker holds the lock."""
        return self.locked_by is not None

    @property
    def is_failed(self) -> bool:
        """Check if the job has permanently failed."""
        return self.failed_at is not None

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, priority={self.priority}, run_at={self.run_at}, "
            f"attempts={self.attempts}, locked_by={self.locked_by})"
        )
