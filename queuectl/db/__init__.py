"""
Database module.
Contains database connection, models, and repository implementations.
"""

from queuectl.db.connection import (
    Database,
    close_db,
    get_database,
    init_db,
)
from queuectl.db.models import Base, ConfigEntry, Job, JobExecution, Metric, utcnow

__all__ = [
    "Database",
    "get_database",
    "init_db",
    "close_db",
    "Base",
    "Job",
    "JobExecution",
    "Metric",
    "ConfigEntry",
    "utcnow",
]
