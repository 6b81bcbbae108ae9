"""
Read-only job and statistics routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from queuectl.api.deps import get_session
from queuectl.constants import JobState
from queuectl.db.repository import JobRepository, MetricRepository
from queuectl.types.api import (
    ExecutionResponse,
    JobListResponse,
    JobResponse,
    StatsResponse,
)

router = APIRouter(prefix="/api", tags=["Jobs"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Execution statistics",
    description="Totals, success rate and 24 hour average duration.",
)
def get_stats(session: Session = Depends(get_session)) -> StatsResponse:
    return StatsResponse(**MetricRepository(session).execution_stats())


@router.get(
    "/jobs",
    summary="Job counts",
    description="Number of jobs in each state.",
)
def get_job_counts(session: Session = Depends(get_session)) -> dict[str, int]:
    counts = JobRepository(session).counts_by_state()
    return {state.value: count for state, count in counts.items()}


@router.get(
    "/jobs/list",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs in creation order with optional state filtering.",
)
def list_jobs(
    state: JobState | None = Query(default=None),
    session: Session = Depends(get_session),
) -> JobListResponse:
    jobs = JobRepository(session).list_jobs(state)
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
        state=state,
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
)
def get_job(job_id: str, session: Session = Depends(get_session)) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job is not found.
    """
    job = JobRepository(session).get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    return JobResponse.model_validate(job)


@router.get(
    "/dlq",
    response_model=JobListResponse,
    summary="Dead letter queue",
)
def list_dlq(session: Session = Depends(get_session)) -> JobListResponse:
    jobs = JobRepository(session).dlq_jobs()
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
        state=JobState.DEAD,
    )


@router.get(
    "/executions",
    response_model=list[ExecutionResponse],
    summary="Recent executions",
)
def list_executions(
    limit: int = Query(default=20, ge=1, le=500),
    session: Session = Depends(get_session),
) -> list[ExecutionResponse]:
    rows = JobRepository(session).recent_executions(limit)
    return [ExecutionResponse(**row) for row in rows]
