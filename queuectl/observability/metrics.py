"""
Execution metrics.

Every attempt is counted twice: in the persisted ``metrics`` relation, which
survives restarts and feeds the dashboard, and in Prometheus collectors for
scraping a live process.
"""

from collections.abc import Iterator
from datetime import datetime

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector
from sqlalchemy.orm import Session

from queuectl.constants import (
    METRIC_JOBS_FAILED,
    METRIC_JOBS_PROCESSED,
    METRIC_JOBS_SUCCEEDED,
    METRIC_JOBS_TIMEOUT,
    PROM_CLAIMS,
    PROM_JOB_DURATION,
    PROM_JOBS_FAILED,
    PROM_JOBS_PROCESSED,
    PROM_JOBS_SUCCEEDED,
    PROM_JOBS_TIMEOUT,
    PROM_LEASES_RECOVERED,
)
from queuectl.db.connection import Database
from queuectl.db.repository import JobRepository, MetricRepository
from queuectl.types.job import JobResult

# Global recorder instance
_metrics: "MetricsRecorder | None" = None


class MetricsRecorder:
    """
    Records per-attempt outcomes and aggregate counters.

    Collects:
    - jobs processed / succeeded / failed / timed out
    - attempt duration by outcome
    - claims per worker
    - leases recovered by the reaper
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the recorder.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_processed = Counter(
            PROM_JOBS_PROCESSED,
            "Total number of execution attempts",
            registry=self._registry,
        )
        self.jobs_succeeded = Counter(
            PROM_JOBS_SUCCEEDED,
            "Total number of successful attempts",
            registry=self._registry,
        )
        self.jobs_failed = Counter(
            PROM_JOBS_FAILED,
            "Total number of failed attempts",
            registry=self._registry,
        )
        self.jobs_timeout = Counter(
            PROM_JOBS_TIMEOUT,
            "Total number of attempts that hit their timeout",
            registry=self._registry,
        )
        self.job_duration = Histogram(
            PROM_JOB_DURATION,
            "Attempt duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )
        self.claims = Counter(
            PROM_CLAIMS,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )
        self.leases_recovered = Counter(
            PROM_LEASES_RECOVERED,
            "Total number of stale leases returned to pending",
            registry=self._registry,
        )

    def record_attempt(
        self,
        session: Session,
        job_id: str,
        result: JobResult,
        started_at: datetime,
        completed_at: datetime,
    ) -> None:
        """
        Record one finished attempt.

        Appends the execution record and bumps the persisted counters in the
        caller's session, then mirrors the counters into Prometheus.
        """
        store = MetricRepository(session)
        store.increment(METRIC_JOBS_PROCESSED)
        if result.success:
            store.increment(METRIC_JOBS_SUCCEEDED)
        else:
            store.increment(METRIC_JOBS_FAILED)
            if result.timed_out:
                store.increment(METRIC_JOBS_TIMEOUT)

        JobRepository(session).record_execution(
            job_id=job_id,
            started_at=started_at,
            completed_at=completed_at,
            success=result.success,
            timed_out=result.timed_out,
            error="" if result.success else (result.error or ""),
        )

        self.jobs_processed.inc()
        if result.success:
            self.jobs_succeeded.inc()
        else:
            self.jobs_failed.inc()
            if result.timed_out:
                self.jobs_timeout.inc()
        self.job_duration.labels(outcome=result.outcome.value).observe(
            (completed_at - started_at).total_seconds()
        )

    def record_claim(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.claims.labels(worker_id=worker_id).inc()

    def record_leases_recovered(self, count: int) -> None:
        """Record stale leases returned to pending."""
        if count > 0:
            self.leases_recovered.inc(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


class StoreCollector(Collector):
    """
    Prometheus collector that reads the persisted counters on every scrape.

    Lets a process that never runs jobs, such as the dashboard, expose the
    totals recorded by worker processes.
    """

    def __init__(self, database: Database):
        self._database = database

    def collect(self) -> Iterator[Metric]:
        with self._database.session() as session:
            counters = MetricRepository(session).all()
            by_state = JobRepository(session).counts_by_state()

        for key, name in (
            (METRIC_JOBS_PROCESSED, PROM_JOBS_PROCESSED),
            (METRIC_JOBS_SUCCEEDED, PROM_JOBS_SUCCEEDED),
            (METRIC_JOBS_FAILED, PROM_JOBS_FAILED),
            (METRIC_JOBS_TIMEOUT, PROM_JOBS_TIMEOUT),
        ):
            family = CounterMetricFamily(
                name, f"Persisted {key} counter"
            )
            family.add_metric([], counters.get(key, 0))
            yield family

        jobs = GaugeMetricFamily("queuectl_jobs", "Jobs by state", labels=["state"])
        for state, count in by_state.items():
            jobs.add_metric([state.value], count)
        yield jobs


def store_registry(database: Database) -> CollectorRegistry:
    """Registry exposing only the persisted store metrics."""
    registry = CollectorRegistry()
    registry.register(StoreCollector(database))
    return registry


def setup_metrics() -> MetricsRecorder:
    """
    Set up and return the process-wide metrics recorder.

    Returns:
        MetricsRecorder: The metrics recorder instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsRecorder()
    return _metrics


def get_metrics() -> MetricsRecorder:
    """Get the process-wide metrics recorder, creating it on first use."""
    if _metrics is None:
        return setup_metrics()
    return _metrics
