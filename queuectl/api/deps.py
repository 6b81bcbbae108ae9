"""
Request dependencies.
"""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from queuectl.db.connection import Database


def get_database(request: Request) -> Database:
    """The store the application was created with."""
    return request.app.state.database


def get_session(request: Request) -> Generator[Session]:
    """
    Dependency for getting database sessions.

    Yields:
        Session: A database session, committed or rolled back on exit.
    """
    with get_database(request).session() as session:
        yield session
