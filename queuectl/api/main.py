"""
Monitoring dashboard application.
"""

import logging

import uvicorn
from fastapi import FastAPI

from queuectl import __version__
from queuectl.api.routes import dashboard_router, health_router, jobs_router
from queuectl.config import get_settings
from queuectl.db.connection import Database
from queuectl.observability.metrics import store_registry
from queuectl.observability.tracing import instrument_fastapi

logger = logging.getLogger(__name__)


def create_app(database: Database, instrument: bool = False) -> FastAPI:
    """
    Create and configure the dashboard application.

    Args:
        database: Store the read-only endpoints query.
        instrument: Attach OpenTelemetry FastAPI instrumentation.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="queuectl dashboard",
        description="Read-only monitoring for the queuectl job queue",
        version=__version__,
        docs_url="/docs",
        redoc_url=None,
    )
    app.state.database = database
    app.state.metrics_registry = store_registry(database)

    app.include_router(dashboard_router)
    app.include_router(health_router)
    app.include_router(jobs_router)

    if instrument:
        instrument_fastapi(app)

    return app


def run(database: Database, host: str | None = None, port: int | None = None) -> None:
    """Run the dashboard server until interrupted."""
    settings = get_settings()
    host = host or settings.dashboard_host
    port = port or settings.dashboard_port
    app = create_app(database, instrument=True)

    logger.info(f"Dashboard server starting on http://{host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
