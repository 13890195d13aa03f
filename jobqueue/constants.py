"""
Application constants.
Centralized location for all constant values used across the application.
"""

from datetime import timedelta
from enum import StrEnum


class RescheduleOutcome(StrEnum):
    """
    What happened to a job after a failed attempt.

    - RESCHEDULED: attempts remain, run_at pushed into the future
    - FAILED: attempts exhausted, failed_at set, record kept
    - DESTROYED: attempts exhausted, record deleted
    - MISSING: the record was gone (or already failed) when we got to it
    """

    RESCHEDULED = "rescheduled"
    FAILED = "failed"
    DESTROYED = "destroyed"
    MISSING = "missing"


class PayloadKind(StrEnum):
    """How an encoded performable is rebuilt."""

    OBJECT = "object"
    RECORD = "record"


# Default values
DEFAULT_PRIORITY = 0
DEFAULT_MAX_ATTEMPTS = 25
DEFAULT_MAX_RUN_TIME = timedelta(hours=4)
DEFAULT_READ_AHEAD = 5
DEFAULT_BACKOFF_EXPONENT = 4
DEFAULT_BACKOFF_BASE_SECONDS = 5

# Marker key for nested performables inside encoded attributes
PAYLOAD_TYPE_KEY = "__type__"
PAYLOAD_KIND_KEY = "__kind__"
PAYLOAD_DATETIME_KEY = "__datetime__"
PAYLOAD_TUPLE_KEY = "__tuple__"

NO_MESSAGE = "<no message>"

# Metrics names
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LOCK_ACQUIRED = "lock_acquired_total"
METRIC_LOCK_CONTENTION = "lock_contention_total"
METRIC_LOCKS_CLEARED = "locks_cleared_total"

# Trace span names
SPAN_RESERVE_JOB = "reserve_job"
SPAN_INVOKE_JOB = "invoke_job"
SPAN_RESCHEDULE_JOB = "reschedule_job"
