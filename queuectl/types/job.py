"""
Job-related type definitions for internal use.
"""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from queuectl.constants import ExecutionOutcome
from queuectl.errors import JobValidationError


class JobSubmission(BaseModel):
    """
    A job description accepted at the submission boundary.

    ``max_retries`` left as None means "use the configured default"; the
    repository resolves it at insert time.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)
    max_retries: int | None = Field(default=None, gt=0)
    timeout: int | None = Field(default=None, gt=0)

    @field_validator("id", "command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @classmethod
    def from_json(cls, raw: str) -> "JobSubmission":
        """
        Parse and validate a JSON job description.

        Raises:
            JobValidationError: If the payload is not a JSON object or a
                required field is missing or invalid.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise JobValidationError(f"invalid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> "JobSubmission":
        """Validate an already-decoded job description."""
        if not isinstance(data, dict):
            raise JobValidationError("job description must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'job'}: {err['msg']}"
                for err in e.errors()
            )
            raise JobValidationError(f"job validation failed: {problems}") from e


class JobResult(BaseModel):
    """
    Result of one command execution.
    Returned by the executor after the process exits, times out or fails to start.
    """

    outcome: ExecutionOutcome
    output: str = ""
    exit_code: int | None = None
    error: str | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.outcome == ExecutionOutcome.SUCCESS

    @property
    def timed_out(self) -> bool:
        return self.outcome == ExecutionOutcome.TIMEOUT


@dataclass
class JobContext:
    """
    Snapshot of the claimed job handed to the executor.
    Built from the row returned by the claim, never cached across attempts.
    """

    job_id: str
    command: str
    attempt: int
    max_retries: int
    timeout_seconds: int
    worker_id: str

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure of this attempt sends the job to the DLQ."""
        return self.attempt >= self.max_retries

