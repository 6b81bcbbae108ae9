"""
Type definitions for the job queue.
Contains input/output type definitions grouped by module.
"""

from queuectl.types.api import (
    ErrorResponse,
    ExecutionResponse,
    HealthResponse,
    JobListResponse,
    JobResponse,
    StatsResponse,
)
from queuectl.types.job import (
    JobContext,
    JobResult,
    JobSubmission,
)

__all__ = [
    # API types
    "JobResponse",
    "JobListResponse",
    "ExecutionResponse",
    "StatsResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "JobSubmission",
    "JobResult",
    "JobContext",
]
