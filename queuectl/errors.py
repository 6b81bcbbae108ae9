"""
Exception hierarchy for the job queue.

Execution failures of a job's command are not exceptions; they are reported as
``JobResult`` values and drive the retry state machine. The classes below cover
boundary validation, store access and pool lifecycle misuse.
"""

__all__ = [
    "QueueError",
    "JobValidationError",
    "DuplicateJobError",
    "JobNotFoundError",
    "InvalidStateError",
    "ConfigValueError",
    "StoreInitError",
    "PoolAlreadyRunningError",
    "PoolNotRunningError",
]


class QueueError(RuntimeError):
    """Base exception for all queue failures."""


class JobValidationError(QueueError, ValueError):
    """Raised when a submitted job description is malformed."""


class DuplicateJobError(QueueError):
    """Raised when a job id is already present in the store."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"job with id '{job_id}' already exists")
        self.job_id = job_id


class JobNotFoundError(QueueError):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"job not found: {job_id}")
        self.job_id = job_id


class InvalidStateError(QueueError):
    """Raised when a job is not in a state that allows the requested change."""


class ConfigValueError(QueueError, ValueError):
    """Raised when a known config key is given a value of the wrong type."""


class StoreInitError(QueueError):
    """Raised when the persistent store cannot be opened or initialised."""


class PoolAlreadyRunningError(QueueError):
    """Raised when starting a worker pool while another one is active in this process."""


class PoolNotRunningError(QueueError):
    """Raised when stopping a worker pool that is not running."""
