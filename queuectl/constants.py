"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a worker)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> PENDING (retryable failure, or stale lease recovered)
    - PROCESSING -> DEAD (retries exhausted)
    - DEAD -> PENDING (manual DLQ retry)

    FAILED is kept for compatibility with existing databases; the worker never
    writes it.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


class ExecutionOutcome(StrEnum):
    """Result category of a single command execution."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    SPAWN_FAILURE = "spawn_failure"


class RetryDecision(StrEnum):
    """What to do with a job after a failed attempt."""

    RETRY = "retry"
    DEAD = "dead"


# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2.0
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_LEASE_DURATION_SECONDS = 300
SHELL = "/bin/sh"
MAX_BACKOFF_SECONDS = 365 * 24 * 60 * 60
# Grace period for reading output after a timed-out process group is killed
OUTPUT_DRAIN_SECONDS = 2

# Persistent config keys
CONFIG_MAX_RETRIES = "max-retries"
CONFIG_BACKOFF_BASE = "backoff-base"

# Persisted counter keys
METRIC_JOBS_PROCESSED = "jobs_processed"
METRIC_JOBS_SUCCEEDED = "jobs_succeeded"
METRIC_JOBS_FAILED = "jobs_failed"
METRIC_JOBS_TIMEOUT = "jobs_timeout"

# Prometheus metric names
PROM_JOBS_PROCESSED = "queuectl_jobs_processed_total"
PROM_JOBS_SUCCEEDED = "queuectl_jobs_succeeded_total"
PROM_JOBS_FAILED = "queuectl_jobs_failed_total"
PROM_JOBS_TIMEOUT = "queuectl_jobs_timeout_total"
PROM_JOB_DURATION = "queuectl_job_duration_seconds"
PROM_CLAIMS = "queuectl_claims_total"
PROM_LEASES_RECOVERED = "queuectl_leases_recovered_total"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"

# Window used for dashboard averages
STATS_WINDOW_HOURS = 24
