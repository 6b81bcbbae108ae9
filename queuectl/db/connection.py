"""
Database connection management.
Handles the SQLAlchemy engine, SQLite pragmas and session creation.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from queuectl.config import get_settings
from queuectl.db.models import Base
from queuectl.errors import StoreInitError

logger = logging.getLogger(__name__)

# Seconds a connection waits on a locked database before raising
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_SECONDS * 1000}")
    cursor.close()


class Database:
    """
    Owns one engine and its session factory.

    Every worker thread opens its own short-lived session per operation; the
    engine's connection pool is the only thing shared between threads.
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize the engine without touching the schema.

        Args:
            database_url: SQLAlchemy URL; ``sqlite:///path`` in normal operation.
            echo: Log every SQL statement.
        """
        self.url = make_url(database_url)
        connect_args: dict = {}
        if self.url.get_backend_name() == "sqlite":
            connect_args = {
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            }
        self.engine: Engine = create_engine(
            database_url,
            echo=echo,
            connect_args=connect_args,
            pool_pre_ping=True,
        )
        if self.url.get_backend_name() == "sqlite":
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self._session_factory = sessionmaker(
            bind=self.engine,
            class_=Session,
            expire_on_commit=False,
            autoflush=False,
        )

    def create_schema(self) -> None:
        """
        Create all tables if they do not exist.

        Raises:
            StoreInitError: If the database file or schema cannot be created.
        """
        database = self.url.database
        try:
            if self.url.get_backend_name() == "sqlite" and database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            Base.metadata.create_all(self.engine)
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (OSError, SQLAlchemyError) as e:
            raise StoreInitError(f"failed to initialize database at {self.url}: {e}") from e
        logger.info("Database initialized", extra={"database": str(self.url)})

    @contextmanager
    def session(self) -> Generator[Session]:
        """
        Context manager for a database session.
        Commits on success and rolls back on any exception.

        Yields:
            Session: A database session.
        """
        with self._session_factory() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()


# Global database handle for the CLI and dashboard processes
_database: Database | None = None


def init_db(database_url: str | None = None) -> Database:
    """
    Initialize the process-wide database and its schema.
    Should be called on application startup.
    """
    global _database
    if _database is None:
        settings = get_settings()
        _database = Database(
            database_url or settings.resolved_database_url,
            echo=settings.log_level == "DEBUG",
        )
        try:
            _database.create_schema()
        except StoreInitError:
            _database.dispose()
            _database = None
            raise
    return _database


def get_database() -> Database:
    """
    Get the process-wide database.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _database


def close_db() -> None:
    """
    Close the database connection.
    Should be called on application shutdown.
    """
    global _database
    if _database is not None:
        _database.dispose()
        _database = None
        logger.info("Database connection closed")

