"""
Dashboard response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from queuectl.constants import JobState


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    state: JobState
    attempts: int
    max_retries: int
    timeout_seconds: int | None
    created_at: datetime
    updated_at: datetime
    last_error: str | None
    next_retry_at: datetime | None
    locked_by: str | None
    locked_at: datetime | None
    output: str | None


class JobListResponse(BaseModel):
    """List of jobs, optionally filtered by state."""

    jobs: list[JobResponse]
    total: int
    state: JobState | None = None


class ExecutionResponse(BaseModel):
    """One execution record joined with its job."""

    job_id: str
    command: str
    state: JobState
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None
    success: bool
    timeout: bool
    error: str | None


class StatsResponse(BaseModel):
    """Aggregate execution statistics."""

    total_processed: int
    total_succeeded: int
    total_failed: int
    total_timeout: int
    success_rate: float
    avg_duration_ms: float
    recent_24h_count: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
