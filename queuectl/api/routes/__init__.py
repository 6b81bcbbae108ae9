"""
API routes module.
"""

from queuectl.api.routes.dashboard import router as dashboard_router
from queuectl.api.routes.health import router as health_router
from queuectl.api.routes.jobs import router as jobs_router

__all__ = ["dashboard_router", "health_router", "jobs_router"]
