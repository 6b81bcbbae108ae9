"""
Worker pool for executing jobs.

The pool runs N worker threads. Each one polls the store for the oldest
eligible job, executes it, and applies the retry policy to the outcome. The
store is the only coordination point between workers; the pool itself only
shares a stop event with them.
"""

import logging
import signal
import threading
from datetime import timedelta
from pathlib import Path
from typing import ClassVar

from queuectl.config import Settings, get_settings
from queuectl.constants import (
    CONFIG_BACKOFF_BASE,
    SPAN_CLAIM_JOB,
    SPAN_EXECUTE_JOB,
    ExecutionOutcome,
    JobState,
    RetryDecision,
)
from queuectl.db.connection import Database
from queuectl.db.models import Job, utcnow
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.errors import PoolAlreadyRunningError, PoolNotRunningError
from queuectl.observability.logging import bind_context, clear_context
from queuectl.observability.metrics import MetricsRecorder, get_metrics
from queuectl.observability.tracing import get_tracer
from queuectl.types.job import JobContext, JobResult
from queuectl.worker.executor import execute_job
from queuectl.worker.pidfile import remove_pid_file, write_pid_file
from queuectl.worker.retry import backoff_delay, decide

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Pool of worker threads sharing one store.

    Features:
    - Conditional-write claiming, so one job runs on one worker at a time
    - Exponential backoff retries and dead letter queue
    - Reaper thread returning stale leases to pending
    - Graceful stop: signal, then join; in-flight attempts always finish

    Only one pool may run per process.
    """

    _guard: ClassVar[threading.Lock] = threading.Lock()
    _active: ClassVar["WorkerPool | None"] = None

    def __init__(
        self,
        database: Database,
        worker_count: int = 1,
        backoff_base: float | None = None,
        metrics: MetricsRecorder | None = None,
        settings: Settings | None = None,
        pid_file: Path | None = None,
    ):
        """
        Initialize the pool.

        Args:
            database: The store shared by all workers.
            worker_count: Number of worker threads.
            backoff_base: Exponent base for retry delays. Read once from the
                ``backoff-base`` config key when not given.
            metrics: Recorder for attempt outcomes.
            settings: Process settings; defaults to the cached settings.
            pid_file: Liveness marker path; defaults to the data directory.
        """
        if worker_count < 1:
            raise ValueError("worker count must be at least 1")

        self._settings = settings or get_settings()
        self._database = database
        self.worker_count = worker_count

        if backoff_base is None:
            with database.session() as session:
                backoff_base = ConfigRepository(session).get_float(
                    CONFIG_BACKOFF_BASE, self._settings.default_backoff_base
                )
        self.backoff_base = backoff_base

        self.poll_interval = self._settings.poll_interval_seconds
        self.error_backoff = self._settings.error_backoff_seconds
        self.reaper_interval = self._settings.reaper_interval_seconds
        self.pid_file = pid_file or self._settings.pid_file

        self._metrics = metrics or get_metrics()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return WorkerPool._active is self

    @property
    def worker_ids(self) -> list[str]:
        return [f"worker-{i}" for i in range(1, self.worker_count + 1)]

    def start(self) -> None:
        """
        Start the worker threads and the lease reaper.

        Raises:
            PoolAlreadyRunningError: If a pool is already running in this process.
        """
        with WorkerPool._guard:
            if WorkerPool._active is not None:
                raise PoolAlreadyRunningError("workers are already running in this process")
            write_pid_file(self.pid_file, self.worker_count)
            WorkerPool._active = self

        self._stop_event.clear()
        self._recover_expired_leases()

        for worker_id in self.worker_ids:
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker_id,),
                name=worker_id,
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

        reaper = threading.Thread(target=self._reaper_loop, name="lease-reaper", daemon=True)
        self._threads.append(reaper)
        reaper.start()

        logger.info(
            f"Started {self.worker_count} workers",
            extra={"backoff_base": self.backoff_base, "pid_file": str(self.pid_file)},
        )

    def request_stop(self) -> None:
        """Ask every loop to exit after its current job. Safe from a signal handler."""
        self._stop_event.set()

    def stop(self) -> None:
        """
        Stop the pool gracefully.

        Blocks until every in-flight attempt has finished and every loop has
        exited, then removes the liveness marker.

        Raises:
            PoolNotRunningError: If this pool is not running.
        """
        if not self.is_running:
            raise PoolNotRunningError("no workers are running")

        logger.info("Stopping workers")
        self._stop_event.set()
        for thread in self._threads:
            thread.join()
        self._threads.clear()

        remove_pid_file(self.pid_file)
        with WorkerPool._guard:
            WorkerPool._active = None
        logger.info("All workers stopped")

    def install_signal_handlers(self) -> None:
        """Route SIGTERM and SIGINT to a graceful stop. Main thread only."""

        def _handle(signum: int, frame) -> None:
            logger.info(
                "Received shutdown signal, stopping workers",
                extra={"signal": signal.Signals(signum).name},
            )
            self.request_stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, _handle)

    def run_until_stopped(self) -> None:
        """Block the calling thread until a stop is requested, then stop."""
        while not self._stop_event.wait(timeout=0.5):
            pass
        self.stop()

    def _worker_loop(self, worker_id: str) -> None:
        bind_context(worker_id=worker_id)
        logger.info("Worker started")
        try:
            while not self._stop_event.is_set():
                try:
                    job = self.claim(worker_id)
                except Exception as e:
                    logger.exception(f"Error getting job: {e}")
                    self._stop_event.wait(self.error_backoff)
                    continue

                if job is None:
                    self._stop_event.wait(self.poll_interval)
                    continue

                logger.info(
                    "Processing job",
                    extra={"job_id": job.id, "command": job.command},
                )
                self.process_job(worker_id, job)
        finally:
            logger.info("Worker shutting down")
            clear_context()

    def claim(self, worker_id: str) -> Job | None:
        """Claim the next eligible job for a worker."""
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", worker_id)
            with self._database.session() as session:
                job = JobRepository(
                    session, self._settings.lease_duration_seconds
                ).claim_next(worker_id)
            if job is not None:
                span.set_attribute("job_id", job.id)
                self._metrics.record_claim(worker_id)
            return job

    def process_job(self, worker_id: str, job: Job) -> None:
        """
        Run one attempt of a claimed job and record its outcome.

        Handles the full lifecycle:
        1. Increment attempts
        2. Execute the command
        3. Store output, append the execution record, bump counters
        4. Complete, schedule a retry, or move to the DLQ

        Never raises; store errors are logged and the job falls back to the
        failure path or, failing that, to lease recovery.
        """
        try:
            started_at = utcnow()
            with self._database.session() as session:
                repo = JobRepository(session)
                repo.increment_attempts(job.id)
                attempt = repo.get_attempts(job.id)

            context = JobContext(
                job_id=job.id,
                command=job.command,
                attempt=attempt,
                max_retries=job.max_retries,
                timeout_seconds=job.timeout_seconds or self._settings.default_timeout_seconds,
                worker_id=worker_id,
            )

            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("worker_id", worker_id)
                span.set_attribute("attempt", attempt)
                result = execute_job(context)
                span.set_attribute("outcome", result.outcome.value)

            self._record_outcome(job.id, result, started_at, utcnow())

        except Exception as e:
            logger.exception("Exception processing job", extra={"job_id": job.id})
            try:
                now = utcnow()
                self._record_outcome(
                    job.id,
                    JobResult(
                        outcome=ExecutionOutcome.SPAWN_FAILURE,
                        error=f"worker exception: {e}",
                    ),
                    now,
                    now,
                )
            except Exception:
                logger.exception("Failed to mark job as failed", extra={"job_id": job.id})

    def _record_outcome(self, job_id: str, result: JobResult, started_at, completed_at) -> None:
        with self._database.session() as session:
            repo = JobRepository(session)
            repo.save_output(job_id, result.output)

            if result.success:
                repo.transition(job_id, JobState.COMPLETED, "")
                self._metrics.record_attempt(session, job_id, result, started_at, completed_at)
                logger.info(
                    "Job completed successfully",
                    extra={"job_id": job_id, "duration_ms": result.duration_ms},
                )
                return

            job = repo.require_job(job_id)
            error = result.error or "unknown error"
            self._metrics.record_attempt(session, job_id, result, started_at, completed_at)

            if decide(job.attempts, job.max_retries) == RetryDecision.DEAD:
                logger.warning(
                    f"Job exceeded max retries ({job.max_retries}), moving to DLQ",
                    extra={"job_id": job_id, "attempts": job.attempts},
                )
                repo.transition(job_id, JobState.DEAD, error)
                return

            delay = backoff_delay(job.attempts, self.backoff_base)
            repo.set_next_retry_at(job_id, utcnow() + timedelta(seconds=delay))
            repo.transition(job_id, JobState.PENDING, error)
            logger.info(
                f"Job will retry in {delay}s",
                extra={
                    "job_id": job_id,
                    "attempt": job.attempts,
                    "max_retries": job.max_retries,
                },
            )

    def _reaper_loop(self) -> None:
        while not self._stop_event.wait(self.reaper_interval):
            self._recover_expired_leases()

    def _recover_expired_leases(self) -> int:
        try:
            with self._database.session() as session:
                count = JobRepository(
                    session, self._settings.lease_duration_seconds
                ).recover_expired_leases()
        except Exception as e:
            logger.exception(f"Error in lease reaper: {e}")
            return 0
        self._metrics.record_leases_recovered(count)
        return count
