"""
Unit tests for the job, metric and config repositories.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from queuectl.constants import (
    CONFIG_BACKOFF_BASE,
    CONFIG_MAX_RETRIES,
    METRIC_JOBS_PROCESSED,
    METRIC_JOBS_SUCCEEDED,
    JobState,
)
from queuectl.db.models import Job, utcnow
from queuectl.db.repository import ConfigRepository, JobRepository, MetricRepository
from queuectl.errors import (
    ConfigValueError,
    DuplicateJobError,
    InvalidStateError,
    JobNotFoundError,
)
from queuectl.types.job import JobSubmission


def submit(repo: JobRepository, job_id: str, command: str = "echo hi", **fields) -> Job:
    return repo.create_job(JobSubmission(id=job_id, command=command, **fields))


def force(session: Session, job_id: str, **values) -> None:
    """Overwrite columns directly, bypassing the repository."""
    session.execute(update(Job).where(Job.id == job_id).values(**values))


class TestCreateJob:
    """Tests for job submission."""

    def test_initial_fields(self, repo: JobRepository):
        job = submit(repo, "a", timeout=10, max_retries=5)

        assert job.state == JobState.PENDING
        assert job.attempts == 0
        assert job.max_retries == 5
        assert job.timeout_seconds == 10
        assert job.locked_by is None
        assert job.next_retry_at is None
        assert job.created_at == job.updated_at

    def test_default_max_retries(self, repo: JobRepository):
        job = submit(repo, "a")
        assert job.max_retries == 3

    def test_max_retries_from_config_store(
        self, repo: JobRepository, config_repo: ConfigRepository
    ):
        config_repo.set(CONFIG_MAX_RETRIES, "7")
        job = submit(repo, "a")
        assert job.max_retries == 7

    def test_duplicate_rejected_and_existing_unchanged(self, repo: JobRepository):
        submit(repo, "a", command="echo first")

        with pytest.raises(DuplicateJobError, match="already exists"):
            submit(repo, "a", command="echo second")

        job = repo.require_job("a")
        assert job.command == "echo first"
        assert len(repo.list_jobs()) == 1


class TestQueries:
    """Tests for read operations."""

    def test_get_missing_job(self, repo: JobRepository):
        assert repo.get_job("missing") is None
        with pytest.raises(JobNotFoundError):
            repo.require_job("missing")

    def test_list_jobs_fifo_and_filter(self, repo: JobRepository, db_session: Session):
        for job_id in ("first", "second", "third"):
            submit(repo, job_id)
        force(db_session, "second", state=JobState.DEAD)

        assert [job.id for job in repo.list_jobs()] == ["first", "second", "third"]
        assert [job.id for job in repo.list_jobs(JobState.PENDING)] == ["first", "third"]
        assert [job.id for job in repo.dlq_jobs()] == ["second"]

    def test_counts_by_state_includes_every_state(
        self, repo: JobRepository, db_session: Session
    ):
        submit(repo, "a")
        submit(repo, "b")
        force(db_session, "b", state=JobState.COMPLETED)

        counts = repo.counts_by_state()

        assert set(counts) == set(JobState)
        assert counts[JobState.PENDING] == 1
        assert counts[JobState.COMPLETED] == 1
        assert counts[JobState.DEAD] == 0


class TestClaimNext:
    """Tests for claiming."""

    def test_claims_oldest_first(self, repo: JobRepository):
        submit(repo, "first")
        submit(repo, "second")

        job = repo.claim_next("worker-1")

        assert job.id == "first"
        assert job.state == JobState.PROCESSING
        assert job.locked_by == "worker-1"
        assert job.locked_at is not None

    def test_empty_queue(self, repo: JobRepository):
        assert repo.claim_next("worker-1") is None

    def test_claimed_job_not_claimed_again(self, repo: JobRepository):
        submit(repo, "only")

        assert repo.claim_next("worker-1").id == "only"
        assert repo.claim_next("worker-2") is None

    def test_future_retry_time_skipped(self, repo: JobRepository, db_session: Session):
        submit(repo, "later")
        submit(repo, "now")
        force(db_session, "later", next_retry_at=utcnow() + timedelta(minutes=5))

        assert repo.claim_next("worker-1").id == "now"
        assert repo.claim_next("worker-1") is None

    def test_past_retry_time_claimable(self, repo: JobRepository, db_session: Session):
        submit(repo, "due")
        force(db_session, "due", next_retry_at=utcnow() - timedelta(seconds=1))

        assert repo.claim_next("worker-1").id == "due"

    def test_claim_clears_retry_time(self, repo: JobRepository, db_session: Session):
        submit(repo, "due")
        force(db_session, "due", next_retry_at=utcnow() - timedelta(seconds=1))

        job = repo.claim_next("worker-1")

        assert job.next_retry_at is None

    def test_fresh_lock_on_pending_job_skipped(
        self, repo: JobRepository, db_session: Session
    ):
        submit(repo, "locked")
        force(db_session, "locked", locked_by="ghost", locked_at=utcnow())

        assert repo.claim_next("worker-1") is None

    def test_stale_lock_on_pending_job_claimable(
        self, repo: JobRepository, db_session: Session
    ):
        submit(repo, "stale")
        force(
            db_session,
            "stale",
            locked_by="ghost",
            locked_at=utcnow() - timedelta(seconds=301),
        )

        job = repo.claim_next("worker-1")

        assert job.id == "stale"
        assert job.locked_by == "worker-1"

    def test_only_pending_jobs_claimed(self, repo: JobRepository, db_session: Session):
        for job_id, state in (
            ("done", JobState.COMPLETED),
            ("dead", JobState.DEAD),
            ("failed", JobState.FAILED),
        ):
            submit(repo, job_id)
            force(db_session, job_id, state=state)

        assert repo.claim_next("worker-1") is None


class TestTransitions:
    """Tests for state changes out of processing."""

    def test_transition_clears_lock(self, repo: JobRepository):
        submit(repo, "a")
        repo.claim_next("worker-1")

        repo.transition("a", JobState.PENDING, "boom")

        job = repo.require_job("a")
        assert job.state == JobState.PENDING
        assert job.last_error == "boom"
        assert job.locked_by is None
        assert job.locked_at is None

    @pytest.mark.parametrize("state", [JobState.COMPLETED, JobState.DEAD, JobState.FAILED])
    def test_leaving_pending_clears_retry_time(
        self, repo: JobRepository, db_session: Session, state: JobState
    ):
        submit(repo, "a")
        force(db_session, "a", next_retry_at=utcnow() - timedelta(seconds=1))
        repo.claim_next("worker-1")
        force(db_session, "a", next_retry_at=utcnow())

        repo.transition("a", state, "")

        assert repo.require_job("a").next_retry_at is None

    def test_back_to_pending_keeps_retry_time(self, repo: JobRepository):
        submit(repo, "a")
        repo.claim_next("worker-1")
        when = utcnow() + timedelta(seconds=4)
        repo.set_next_retry_at("a", when)

        repo.transition("a", JobState.PENDING, "boom")

        assert repo.require_job("a").next_retry_at == when

    def test_transition_to_processing_rejected(self, repo: JobRepository):
        submit(repo, "a")
        with pytest.raises(InvalidStateError):
            repo.transition("a", JobState.PROCESSING)

    def test_increment_attempts(self, repo: JobRepository):
        submit(repo, "a")

        repo.increment_attempts("a")
        repo.increment_attempts("a")

        assert repo.get_attempts("a") == 2

    def test_get_attempts_missing(self, repo: JobRepository):
        with pytest.raises(JobNotFoundError):
            repo.get_attempts("missing")

    def test_save_output(self, repo: JobRepository):
        submit(repo, "a")
        repo.save_output("a", "hello\n")
        assert repo.require_job("a").output == "hello\n"


class TestRetryFromDlq:
    """Tests for manual DLQ retry."""

    def _dead_job(self, repo: JobRepository, db_session: Session) -> None:
        submit(repo, "d")
        force(
            db_session,
            "d",
            state=JobState.DEAD,
            attempts=3,
            last_error="command exited with code 1: ",
            next_retry_at=utcnow() + timedelta(seconds=8),
        )

    def test_resets_attempts_by_default(self, repo: JobRepository, db_session: Session):
        self._dead_job(repo, db_session)

        job = repo.retry_from_dlq("d")

        assert job.state == JobState.PENDING
        assert job.attempts == 0
        assert job.next_retry_at is None
        assert job.last_error is None
        assert job.locked_by is None

    def test_keep_attempts(self, repo: JobRepository, db_session: Session):
        self._dead_job(repo, db_session)

        job = repo.retry_from_dlq("d", reset_attempts=False)

        assert job.state == JobState.PENDING
        assert job.attempts == 3

    def test_retried_job_immediately_claimable(
        self, repo: JobRepository, db_session: Session
    ):
        self._dead_job(repo, db_session)
        repo.retry_from_dlq("d")

        assert repo.claim_next("worker-1").id == "d"

    def test_not_dead_rejected(self, repo: JobRepository):
        submit(repo, "p")
        with pytest.raises(InvalidStateError, match="not in the dead letter queue"):
            repo.retry_from_dlq("p")
        assert repo.require_job("p").state == JobState.PENDING

    def test_missing_job(self, repo: JobRepository):
        with pytest.raises(JobNotFoundError):
            repo.retry_from_dlq("missing")


class TestRecoverExpiredLeases:
    """Tests for stale lease recovery."""

    def test_stale_processing_job_returned_to_pending(
        self, repo: JobRepository, db_session: Session
    ):
        submit(repo, "crashed")
        repo.claim_next("worker-1")
        repo.increment_attempts("crashed")
        force(db_session, "crashed", locked_at=utcnow() - timedelta(seconds=301))

        assert repo.recover_expired_leases() == 1

        job = repo.require_job("crashed")
        assert job.state == JobState.PENDING
        assert job.locked_by is None
        assert job.attempts == 1

    def test_fresh_processing_job_untouched(self, repo: JobRepository):
        submit(repo, "running")
        repo.claim_next("worker-1")

        assert repo.recover_expired_leases() == 0
        assert repo.require_job("running").state == JobState.PROCESSING

    def test_custom_lease_window(self, db_session: Session):
        repo = JobRepository(db_session, lease_duration_seconds=5)
        submit(repo, "short")
        repo.claim_next("worker-1")
        force(db_session, "short", locked_at=utcnow() - timedelta(seconds=6))

        assert repo.recover_expired_leases() == 1


class TestExecutionRecords:
    """Tests for execution history."""

    def test_record_and_list(self, repo: JobRepository):
        submit(repo, "a", command="echo a")
        start = utcnow()
        repo.record_execution("a", start, start + timedelta(milliseconds=250), False, False, "boom")
        repo.record_execution("a", start + timedelta(seconds=1), start + timedelta(seconds=2), True, False)
        repo._session.flush()

        records = repo.executions_for("a")
        assert [record.success for record in records] == [False, True]
        assert records[0].duration_ms == 250
        assert records[0].error == "boom"

        recent = repo.recent_executions(limit=1)
        assert len(recent) == 1
        assert recent[0]["job_id"] == "a"
        assert recent[0]["command"] == "echo a"
        assert recent[0]["success"] is True


class TestMetricRepository:
    """Tests for persisted counters."""

    def test_increment_creates_and_adds(self, metric_repo: MetricRepository):
        metric_repo.increment(METRIC_JOBS_PROCESSED)
        metric_repo.increment(METRIC_JOBS_PROCESSED, 2)

        assert metric_repo.get(METRIC_JOBS_PROCESSED) == 3
        assert metric_repo.all() == {METRIC_JOBS_PROCESSED: 3}

    def test_missing_counter_is_zero(self, metric_repo: MetricRepository):
        assert metric_repo.get(METRIC_JOBS_SUCCEEDED) == 0

    def test_stats_without_data(self, metric_repo: MetricRepository):
        stats = metric_repo.execution_stats()

        assert stats["total_processed"] == 0
        assert stats["success_rate"] == 0.0
        assert stats["avg_duration_ms"] == 0.0
        assert stats["recent_24h_count"] == 0

    def test_stats_success_rate_and_average(
        self, repo: JobRepository, metric_repo: MetricRepository
    ):
        submit(repo, "a")
        start = utcnow()
        repo.record_execution("a", start, start + timedelta(milliseconds=100), True, False)
        repo.record_execution("a", start, start + timedelta(milliseconds=300), False, False, "x")
        metric_repo.increment(METRIC_JOBS_PROCESSED, 4)
        metric_repo.increment(METRIC_JOBS_SUCCEEDED, 3)
        repo._session.flush()

        stats = metric_repo.execution_stats()

        assert stats["success_rate"] == 75.0
        assert stats["avg_duration_ms"] == 200.0
        assert stats["recent_24h_count"] == 2


class TestConfigRepository:
    """Tests for the operator config store."""

    def test_set_and_get(self, config_repo: ConfigRepository):
        config_repo.set(CONFIG_BACKOFF_BASE, "3")

        assert config_repo.get(CONFIG_BACKOFF_BASE) == "3"
        assert config_repo.get_float(CONFIG_BACKOFF_BASE, 2.0) == 3.0

    def test_overwrite(self, config_repo: ConfigRepository):
        config_repo.set(CONFIG_MAX_RETRIES, "3")
        config_repo.set(CONFIG_MAX_RETRIES, "5")

        assert config_repo.all() == {CONFIG_MAX_RETRIES: "5"}

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            (CONFIG_MAX_RETRIES, "abc"),
            (CONFIG_MAX_RETRIES, "0"),
            (CONFIG_MAX_RETRIES, "1.5"),
            (CONFIG_BACKOFF_BASE, "-2"),
            (CONFIG_BACKOFF_BASE, "fast"),
        ],
    )
    def test_invalid_values_rejected(self, config_repo: ConfigRepository, key: str, value: str):
        with pytest.raises(ConfigValueError):
            config_repo.set(key, value)
        assert config_repo.get(key) is None

    def test_unknown_keys_stored_verbatim(self, config_repo: ConfigRepository):
        config_repo.set("note", "anything")
        assert config_repo.get("note") == "anything"

    def test_typed_getters_fall_back_to_default(self, config_repo: ConfigRepository):
        config_repo.set("custom", "not-a-number")

        assert config_repo.get_int("missing", 4) == 4
        assert config_repo.get_int("custom", 4) == 4
        assert config_repo.get_float("custom", 2.5) == 2.5
