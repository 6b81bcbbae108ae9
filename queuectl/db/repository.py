"""
Repositories for database operations.
Implements the core data access patterns for jobs, execution records,
persisted counters and the operator config store.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import func, literal_column, or_, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from queuectl.config import get_settings
from queuectl.constants import (
    CONFIG_BACKOFF_BASE,
    CONFIG_MAX_RETRIES,
    METRIC_JOBS_FAILED,
    METRIC_JOBS_PROCESSED,
    METRIC_JOBS_SUCCEEDED,
    METRIC_JOBS_TIMEOUT,
    STATS_WINDOW_HOURS,
    JobState,
)
from queuectl.db.models import ConfigEntry, Job, JobExecution, Metric, utcnow
from queuectl.errors import (
    ConfigValueError,
    DuplicateJobError,
    InvalidStateError,
    JobNotFoundError,
)
from queuectl.types.job import JobSubmission

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job and execution record operations.

    Implements atomic operations for:
    - Job submission with duplicate id rejection
    - Claiming with a conditional pending -> processing write
    - Status transitions out of processing
    - Stale lease recovery
    """

    def __init__(self, session: Session, lease_duration_seconds: int | None = None):
        """
        Initialize the repository with a database session.

        Args:
            session: The database session.
            lease_duration_seconds: Lease window; defaults to the configured value.
        """
        self._session = session
        self._lease = timedelta(
            seconds=lease_duration_seconds or get_settings().lease_duration_seconds
        )

    def create_job(self, submission: JobSubmission, default_max_retries: int | None = None) -> Job:
        """
        Insert a new pending job.

        Args:
            submission: The validated job description.
            default_max_retries: Used when the submission omits ``max_retries``;
                read from the config store when not given.

        Returns:
            The created Job.

        Raises:
            DuplicateJobError: If a job with the same id already exists. Nothing
                is written in that case.
        """
        max_retries = submission.max_retries
        if max_retries is None:
            max_retries = default_max_retries or ConfigRepository(self._session).get_int(
                CONFIG_MAX_RETRIES, get_settings().default_max_retries
            )

        now = utcnow()
        job = Job(
            id=submission.id,
            command=submission.command,
            state=JobState.PENDING,
            attempts=0,
            max_retries=max_retries,
            timeout_seconds=submission.timeout,
            created_at=now,
            updated_at=now,
        )
        if self.get_job(submission.id) is not None:
            logger.info("Rejected duplicate job id", extra={"job_id": submission.id})
            raise DuplicateJobError(submission.id)

        self._session.add(job)
        try:
            self._session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent submission of the same id
            self._session.rollback()
            logger.info("Rejected duplicate job id", extra={"job_id": submission.id})
            raise DuplicateJobError(submission.id) from e

        logger.info(
            "Created new job",
            extra={"job_id": job.id, "max_retries": max_retries},
        )
        return job

    def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID, always re-read from the database.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def require_job(self, job_id: str) -> Job:
        """Get a job by ID or raise JobNotFoundError."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, state: JobState | None = None) -> Sequence[Job]:
        """
        List jobs in FIFO order, optionally filtered by state.

        Args:
            state: Optional state filter.

        Returns:
            Jobs ordered by creation time.
        """
        stmt = select(Job).order_by(Job.created_at.asc(), literal_column("jobs.rowid").asc())
        if state is not None:
            stmt = stmt.where(Job.state == state)
        return self._session.execute(stmt).scalars().all()

    def dlq_jobs(self) -> Sequence[Job]:
        """Jobs that exhausted their retries."""
        return self.list_jobs(JobState.DEAD)

    def counts_by_state(self) -> dict[JobState, int]:
        """
        Get job counts grouped by state.

        Returns:
            Count for every state, zero when no job is in it.
        """
        counts = {state: 0 for state in JobState}
        stmt = select(Job.state, func.count()).group_by(Job.state)
        for state, count in self._session.execute(stmt).all():
            counts[JobState(state)] = count
        return counts

    def claim_next(self, worker_id: str) -> Job | None:
        """
        Claim the oldest eligible pending job for a worker.

        A job is eligible when it is pending, carries no live lock, and its
        retry time (if any) has passed. The claim itself is a conditional
        write on ``state = 'pending'``; among concurrent claimants of the same
        row exactly one write affects a row. A lost race returns None instead
        of trying the next candidate so the caller's poll loop stays simple.

        Args:
            worker_id: The worker identifier stamped into ``locked_by``.

        Returns:
            The claimed Job, or None if nothing was claimable.
        """
        now = utcnow()
        stale_before = now - self._lease

        candidate = self._session.execute(
            select(Job.id)
            .where(
                Job.state == JobState.PENDING,
                or_(Job.locked_by.is_(None), Job.locked_at < stale_before),
                or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now),
            )
            .order_by(Job.created_at.asc(), literal_column("jobs.rowid").asc())
            .limit(1)
        ).scalar_one_or_none()

        if candidate is None:
            return None

        result = self._session.execute(
            update(Job)
            .where(Job.id == candidate, Job.state == JobState.PENDING)
            .values(
                state=JobState.PROCESSING,
                locked_by=worker_id,
                locked_at=now,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.debug(
                "Lost claim race",
                extra={"job_id": candidate, "worker_id": worker_id},
            )
            return None

        logger.info("Claimed job", extra={"job_id": candidate, "worker_id": worker_id})
        return self.get_job(candidate)

    def transition(self, job_id: str, new_state: JobState, last_error: str = "") -> None:
        """
        Move a job out of processing.

        Overwrites state and last_error and clears the lock unconditionally.
        The retry time survives only on a move back to pending.

        Args:
            job_id: The job id.
            new_state: Target state; processing is not allowed here.
            last_error: Error message of the attempt, empty on success.

        Raises:
            InvalidStateError: If asked to transition into processing.
        """
        if new_state == JobState.PROCESSING:
            raise InvalidStateError("jobs enter processing only through claim_next")

        values: dict[str, Any] = {
            "state": new_state,
            "last_error": last_error,
            "locked_by": None,
            "locked_at": None,
            "updated_at": utcnow(),
        }
        if new_state != JobState.PENDING:
            values["next_retry_at"] = None

        self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def increment_attempts(self, job_id: str) -> None:
        """Atomically add one to the attempt counter."""
        self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(attempts=Job.attempts + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def get_attempts(self, job_id: str) -> int:
        """Read the current attempt counter straight from the row."""
        attempts = self._session.execute(
            select(Job.attempts).where(Job.id == job_id)
        ).scalar_one_or_none()
        if attempts is None:
            raise JobNotFoundError(job_id)
        return attempts

    def set_next_retry_at(self, job_id: str, when: datetime | None) -> None:
        """Set the earliest time the job may be claimed again."""
        self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(next_retry_at=when, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def save_output(self, job_id: str, output: str) -> None:
        """Store the combined output of the latest attempt."""
        self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(output=output, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def retry_from_dlq(self, job_id: str, reset_attempts: bool = True) -> Job:
        """
        Move a dead job back to pending.

        Args:
            job_id: The job id.
            reset_attempts: Whether to reset the attempt counter to 0.

        Returns:
            The updated Job.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidStateError: If the job is not dead.
        """
        values: dict[str, Any] = {
            "state": JobState.PENDING,
            "locked_by": None,
            "locked_at": None,
            "next_retry_at": None,
            "last_error": None,
            "updated_at": utcnow(),
        }
        if reset_attempts:
            values["attempts"] = 0

        result = self._session.execute(
            update(Job)
            .where(Job.id == job_id, Job.state == JobState.DEAD)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            job = self.require_job(job_id)
            raise InvalidStateError(
                f"job '{job_id}' is not in the dead letter queue (current state: {job.state})"
            )

        logger.info(
            "Job retried from DLQ",
            extra={"job_id": job_id, "reset_attempts": reset_attempts},
        )
        return self.require_job(job_id)

    def recover_expired_leases(self) -> int:
        """
        Return jobs abandoned in processing to pending.

        A job whose lock is older than the lease window is assumed to belong
        to a crashed worker. Attempts are kept; the reclaimed run counts as a
        new attempt when it is claimed again.

        Returns:
            Number of recovered jobs.
        """
        now = utcnow()
        result = self._session.execute(
            update(Job)
            .where(
                Job.state == JobState.PROCESSING,
                Job.locked_at < now - self._lease,
            )
            .values(
                state=JobState.PENDING,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount
        if count > 0:
            logger.warning(f"Recovered {count} jobs with expired leases")
        return count

    def record_execution(
        self,
        job_id: str,
        started_at: datetime,
        completed_at: datetime,
        success: bool,
        timed_out: bool,
        error: str = "",
    ) -> JobExecution:
        """Append one execution record."""
        record = JobExecution(
            job_id=job_id,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            success=success,
            timeout=timed_out,
            error=error,
        )
        self._session.add(record)
        return record

    def executions_for(self, job_id: str) -> Sequence[JobExecution]:
        """Execution records of one job, oldest first."""
        stmt = (
            select(JobExecution)
            .where(JobExecution.job_id == job_id)
            .order_by(JobExecution.id.asc())
        )
        return self._session.execute(stmt).scalars().all()

    def recent_executions(self, limit: int = 20) -> list[dict[str, Any]]:
        """
        Most recent execution records joined with their job.

        Args:
            limit: Maximum number of records.

        Returns:
            Dicts shaped like ``ExecutionResponse``, newest first.
        """
        stmt = (
            select(JobExecution, Job.command, Job.state)
            .join(Job, JobExecution.job_id == Job.id)
            .order_by(JobExecution.started_at.desc(), JobExecution.id.desc())
            .limit(limit)
        )
        return [
            {
                "job_id": record.job_id,
                "command": command,
                "state": state,
                "started_at": record.started_at,
                "completed_at": record.completed_at,
                "duration_ms": record.duration_ms,
                "success": record.success,
                "timeout": record.timeout,
                "error": record.error,
            }
            for record, command, state in self._session.execute(stmt).all()
        ]


class MetricRepository:
    """Persisted monotonic counters and the aggregate stats built on them."""

    def __init__(self, session: Session):
        self._session = session

    def increment(self, key: str, amount: int = 1) -> None:
        """Add to a counter, creating it on first use."""
        now = utcnow()
        stmt = insert(Metric).values(key=key, value=amount, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Metric.key],
            set_={"value": Metric.value + amount, "updated_at": now},
        )
        self._session.execute(stmt)

    def get(self, key: str) -> int:
        value = self._session.execute(
            select(Metric.value).where(Metric.key == key)
        ).scalar_one_or_none()
        return value or 0

    def all(self) -> dict[str, int]:
        stmt = select(Metric.key, Metric.value).order_by(Metric.key)
        return {key: value for key, value in self._session.execute(stmt).all()}

    def execution_stats(self) -> dict[str, Any]:
        """
        Aggregate counters plus a trailing-window average duration.

        Returns:
            Dict shaped like ``StatsResponse``.
        """
        processed = self.get(METRIC_JOBS_PROCESSED)
        succeeded = self.get(METRIC_JOBS_SUCCEEDED)
        window_start = utcnow() - timedelta(hours=STATS_WINDOW_HOURS)

        avg_duration = self._session.execute(
            select(func.avg(JobExecution.duration_ms)).where(
                JobExecution.completed_at.is_not(None),
                JobExecution.started_at > window_start,
            )
        ).scalar()
        recent_count = self._session.execute(
            select(func.count())
            .select_from(JobExecution)
            .where(JobExecution.started_at > window_start)
        ).scalar()

        return {
            "total_processed": processed,
            "total_succeeded": succeeded,
            "total_failed": self.get(METRIC_JOBS_FAILED),
            "total_timeout": self.get(METRIC_JOBS_TIMEOUT),
            "success_rate": (succeeded / processed * 100) if processed > 0 else 0.0,
            "avg_duration_ms": float(avg_duration) if avg_duration is not None else 0.0,
            "recent_24h_count": recent_count or 0,
        }


class ConfigRepository:
    """Operator-editable key/value settings."""

    # Known keys and the parser each value must satisfy
    _VALIDATORS = {
        CONFIG_MAX_RETRIES: int,
        CONFIG_BACKOFF_BASE: float,
    }

    def __init__(self, session: Session):
        self._session = session

    def get(self, key: str) -> str | None:
        return self._session.execute(
            select(ConfigEntry.value).where(ConfigEntry.key == key)
        ).scalar_one_or_none()

    def set(self, key: str, value: str) -> None:
        """
        Store a value, validating known keys.

        Raises:
            ConfigValueError: If a known key gets a non-numeric or non-positive value.
        """
        parser = self._VALIDATORS.get(key)
        if parser is not None:
            try:
                parsed = parser(value)
            except ValueError as e:
                raise ConfigValueError(
                    f"invalid value for {key}: {value!r} (must be {'an integer' if parser is int else 'a number'})"
                ) from e
            if parsed <= 0:
                raise ConfigValueError(f"invalid value for {key}: {value!r} (must be positive)")

        now = utcnow()
        stmt = insert(ConfigEntry).values(key=key, value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key],
            set_={"value": value, "updated_at": now},
        )
        self._session.execute(stmt)
        logger.info("Config updated", extra={"key": key, "value": value})

    def all(self) -> dict[str, str]:
        stmt = select(ConfigEntry.key, ConfigEntry.value).order_by(ConfigEntry.key)
        return {key: value for key, value in self._session.execute(stmt).all()}

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        try:
            return int(raw) if raw is not None else default
        except ValueError:
            logger.warning("Ignoring unparsable config value", extra={"key": key, "value": raw})
            return default

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key)
        try:
            return float(raw) if raw is not None else default
        except ValueError:
            logger.warning("Ignoring unparsable config value", extra={"key": key, "value": raw})
            return default
