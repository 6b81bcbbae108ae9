"""
Pytest configuration and shared fixtures.
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry
from sqlalchemy.orm import Session

from queuectl.config import Settings, get_settings
from queuectl.db import Database
from queuectl.db.repository import ConfigRepository, JobRepository, MetricRepository
from queuectl.observability.metrics import MetricsRecorder
from queuectl.types.job import JobSubmission
from queuectl.worker.pool import WorkerPool


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None]:
    """Point the cached settings at a per-test data directory."""
    monkeypatch.setenv("QUEUECTL_DATA_DIR", str(tmp_path / "data"))
    for name in ("QUEUECTL_DATABASE_URL", "QUEUECTL_LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with short poll intervals."""
    return Settings(
        data_dir=tmp_path / "data",
        poll_interval_seconds=0.05,
        error_backoff_seconds=0.05,
        reaper_interval_seconds=0.2,
        lease_duration_seconds=300,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def database(test_settings: Settings) -> Generator[Database]:
    """A fresh SQLite database with the schema created."""
    db = Database(test_settings.resolved_database_url)
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def db_session(database: Database) -> Generator[Session]:
    """A database session committed at the end of the test."""
    with database.session() as session:
        yield session


@pytest.fixture
def repo(db_session: Session) -> JobRepository:
    return JobRepository(db_session)


@pytest.fixture
def metric_repo(db_session: Session) -> MetricRepository:
    return MetricRepository(db_session)


@pytest.fixture
def config_repo(db_session: Session) -> ConfigRepository:
    return ConfigRepository(db_session)


@pytest.fixture
def metrics() -> MetricsRecorder:
    """Metrics recorder on an isolated Prometheus registry."""
    return MetricsRecorder(registry=CollectorRegistry())


@pytest.fixture
def pool(
    database: Database,
    metrics: MetricsRecorder,
    test_settings: Settings,
) -> Generator[WorkerPool]:
    """A single-worker pool with backoff base 2, not started."""
    worker_pool = WorkerPool(
        database,
        worker_count=1,
        backoff_base=2.0,
        metrics=metrics,
        settings=test_settings,
    )
    yield worker_pool
    if worker_pool.is_running:
        worker_pool.stop()


@pytest.fixture
def enqueue(database: Database):
    """Submit a job from a dict and return its id."""

    def _enqueue(**fields) -> str:
        submission = JobSubmission.from_dict(fields)
        with database.session() as session:
            job = JobRepository(session).create_job(submission)
        return job.id

    return _enqueue
