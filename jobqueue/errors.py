"""Exception types for the job queue."""

from datetime import timedelta


class JobQueueError(Exception):
    """Base exception for all job queue errors."""

    pass


class InvalidPerformableError(JobQueueError, ValueError):
    """Raised when something that cannot be performed is enqueued."""

    pass


class SerializationError(JobQueueError, TypeError):
    """Raised when a payload contains a value the codec cannot represent."""

    pass


class DeserializationError(JobQueueError):
    """Raised when a stored payload cannot be turned back into a performable."""

    pass


class MaxRunTimeExceededError(JobQueueError):
    """Raised when an invocation outlives the configured max run time."""

    def __init__(self, max_run_time: timedelta, message: str = None):
        self.max_run_time = max_run_time
        if message is None:
            message = (
                f"execution expired after {max_run_time.total_seconds():g}s"
            )
        super().__init__(message)


class JobNotFoundError(JobQueueError):
    """Raised when a job is not found."""

    def __init__(self, job_id, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class FailureHookError(JobQueueError):
    """
    Raised when a job's failure hook raises.

    The job has already been destroyed or marked failed when this is
    raised; `outcome` says which. The hook's exception is the cause.
    """

    def __init__(self, job_id, outcome, message: str = None):
        self.job_id = job_id
        self.outcome = outcome
        if message is None:
            message = f"Failure hook of job {job_id} raised"
        super().__init__(message)
