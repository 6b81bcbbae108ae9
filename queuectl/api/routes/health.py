"""
Health check routes.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from queuectl import __version__
from queuectl.api.deps import get_session
from queuectl.db.models import utcnow
from queuectl.types.api import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the dashboard and database connection.",
)
def health_check(session: Session = Depends(get_session)) -> HealthResponse:
    """
    Perform a health check.

    Checks database connectivity and returns service status.
    """
    db_status = "healthy"
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=utcnow(),
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose persisted counters and job counts in Prometheus format.",
)
def metrics(request: Request) -> Response:
    return Response(
        content=generate_latest(request.app.state.metrics_registry),
        media_type=CONTENT_TYPE_LATEST,
    )
