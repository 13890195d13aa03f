"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_LOCK_ACQUIRED,
    METRIC_LOCK_CONTENTION,
    METRIC_LOCKS_CLEARED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job enqueues and outcomes
    - Job execution duration
    - Lock acquisition, contention and cleanup
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue"],
            registry=self._registry,
        )

        # Outcome of each run: succeeded, rescheduled, failed, destroyed, missing
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job runs by outcome",
            ["status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lock_acquired = Counter(
            METRIC_LOCK_ACQUIRED,
            "Total number of job locks acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.lock_contention = Counter(
            METRIC_LOCK_CONTENTION,
            "Total number of lock attempts lost to another worker",
            ["worker_id"],
            registry=self._registry,
        )

        self.locks_cleared = Counter(
            METRIC_LOCKS_CLEARED,
            "Total number of locks released by clear_locks",
            ["worker_id"],
            registry=self._registry,
        )

    def record_job_enqueued(self, queue: str | None) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.labels(queue=queue or "default").inc()

    def record_job_completed(self, status: str, duration_seconds: float) -> None:
        """Record the outcome of a job run."""
        self.jobs_completed.labels(status=status).inc()
        self.job_duration.labels(status=status).observe(duration_seconds)

    def record_lock_acquired(self, worker_id: str) -> None:
        """Record lock acquisition."""
        self.lock_acquired.labels(worker_id=worker_id).inc()

    def record_lock_contention(self, worker_id: str) -> None:
        """Record a lost lock race."""
        self.lock_contention.labels(worker_id=worker_id).inc()

    def record_locks_cleared(self, worker_id: str, count: int) -> None:
        """Record locks released for a worker."""
        self.locks_cleared.labels(worker_id=worker_id).inc(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
