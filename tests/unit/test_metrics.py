"""
Unit tests for metrics recording.
"""

from datetime import timedelta

from prometheus_client import CollectorRegistry, generate_latest

from queuectl.constants import (
    METRIC_JOBS_FAILED,
    METRIC_JOBS_PROCESSED,
    METRIC_JOBS_SUCCEEDED,
    METRIC_JOBS_TIMEOUT,
    ExecutionOutcome,
)
from queuectl.db import Database
from queuectl.db.models import utcnow
from queuectl.db.repository import JobRepository, MetricRepository
from queuectl.observability.metrics import MetricsRecorder, store_registry
from queuectl.types.job import JobResult


def test_record_attempt_success(database: Database, enqueue):
    """Test that a success bumps processed and succeeded only."""
    registry = CollectorRegistry()
    recorder = MetricsRecorder(registry=registry)
    job_id = enqueue(id="ok", command="true")
    started = utcnow()

    with database.session() as session:
        recorder.record_attempt(
            session,
            job_id,
            JobResult(outcome=ExecutionOutcome.SUCCESS, exit_code=0),
            started,
            started + timedelta(milliseconds=40),
        )

    with database.session() as session:
        counters = MetricRepository(session).all()
        records = JobRepository(session).executions_for(job_id)

    assert counters == {METRIC_JOBS_PROCESSED: 1, METRIC_JOBS_SUCCEEDED: 1}
    assert len(records) == 1
    assert records[0].success is True
    assert records[0].duration_ms == 40
    assert registry.get_sample_value("queuectl_jobs_processed_total") == 1
    assert registry.get_sample_value("queuectl_jobs_succeeded_total") == 1
    assert registry.get_sample_value("queuectl_jobs_failed_total") == 0


def test_record_attempt_timeout(database: Database, enqueue):
    """Test that a timeout counts as both failed and timed out."""
    registry = CollectorRegistry()
    recorder = MetricsRecorder(registry=registry)
    job_id = enqueue(id="slow", command="sleep 5", timeout=1)
    started = utcnow()

    with database.session() as session:
        recorder.record_attempt(
            session,
            job_id,
            JobResult(outcome=ExecutionOutcome.TIMEOUT, error="job timeout after 1s: "),
            started,
            started + timedelta(seconds=1),
        )

    with database.session() as session:
        counters = MetricRepository(session).all()
        record = JobRepository(session).executions_for(job_id)[0]

    assert counters[METRIC_JOBS_FAILED] == 1
    assert counters[METRIC_JOBS_TIMEOUT] == 1
    assert METRIC_JOBS_SUCCEEDED not in counters
    assert record.timeout is True
    assert record.error == "job timeout after 1s: "
    assert registry.get_sample_value("queuectl_jobs_timeout_total") == 1
    assert (
        registry.get_sample_value(
            "queuectl_job_duration_seconds_count", {"outcome": "timeout"}
        )
        == 1
    )


def test_record_claim_and_leases(metrics: MetricsRecorder):
    metrics.record_claim("worker-1")
    metrics.record_claim("worker-1")
    metrics.record_leases_recovered(0)
    metrics.record_leases_recovered(2)

    output = metrics.get_metrics().decode()

    assert 'queuectl_claims_total{worker_id="worker-1"} 2.0' in output
    assert "queuectl_leases_recovered_total 2.0" in output
    assert metrics.get_content_type().startswith("text/plain")


def test_store_registry_reads_persisted_counters(database: Database, enqueue):
    enqueue(id="a", command="true")
    enqueue(id="b", command="true")
    with database.session() as session:
        MetricRepository(session).increment(METRIC_JOBS_PROCESSED, 5)

    registry = store_registry(database)

    assert registry.get_sample_value("queuectl_jobs_processed_total") == 5
    assert registry.get_sample_value("queuectl_jobs_failed_total") == 0
    assert registry.get_sample_value("queuectl_jobs", {"state": "pending"}) == 2
    assert registry.get_sample_value("queuectl_jobs", {"state": "dead"}) == 0
    assert b"queuectl_jobs_processed_total 5.0" in generate_latest(registry)
