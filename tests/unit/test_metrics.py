"""
Unit tests for the Prometheus metrics collector.
"""

import pytest
from prometheus_client import CollectorRegistry

from jobqueue.observability.metrics import MetricsCollector


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    @pytest.fixture
    def registry(self) -> CollectorRegistry:
        return CollectorRegistry()

    @pytest.fixture
    def metrics(self, registry: CollectorRegistry) -> MetricsCollector:
        return MetricsCollector(registry=registry)

    def test_records_job_outcomes(self, metrics: MetricsCollector, registry: CollectorRegistry):
        """Test that outcomes and durations are recorded per status."""
        metrics.record_job_completed(status="succeeded", duration_seconds=0.2)
        metrics.record_job_completed(status="rescheduled", duration_seconds=0.3)

        assert registry.get_sample_value("jobs_completed_total", {"status": "succeeded"}) == 1
        assert registry.get_sample_value("jobs_completed_total", {"status": "rescheduled"}) == 1
        assert registry.get_sample_value("job_duration_seconds_count", {"status": "succeeded"}) == 1

    def test_records_enqueue_per_queue(self, metrics: MetricsCollector, registry: CollectorRegistry):
        """Test that enqueues without a queue count under default."""
        metrics.record_job_enqueued(None)
        metrics.record_job_enqueued("mail")

        assert registry.get_sample_value("jobs_enqueued_total", {"queue": "default"}) == 1
        assert registry.get_sample_value("jobs_enqueued_total", {"queue": "mail"}) == 1

    def test_records_locks(self, metrics: MetricsCollector, registry: CollectorRegistry):
        """Test lock counters."""
        metrics.record_lock_acquired("worker1")
        metrics.record_lock_contention("worker1")
        metrics.record_locks_cleared("worker1", 3)

        labels = {"worker_id": "worker1"}
        assert registry.get_sample_value("lock_acquired_total", labels) == 1
        assert registry.get_sample_value("lock_contention_total", labels) == 1
        assert registry.get_sample_value("locks_cleared_total", labels) == 3

    def test_exposition(self, metrics: MetricsCollector):
        """Test the Prometheus text output."""
        metrics.record_job_enqueued(None)

        assert b"jobs_enqueued_total" in metrics.get_metrics()
        assert metrics.get_content_type().startswith("text/plain")
