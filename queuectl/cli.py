"""
Command-line interface.

    queuectl enqueue '{"id": "job1", "command": "echo hi"}'
    queuectl worker start --count 3
    queuectl status
"""

import os
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import click

from queuectl.config import Settings, get_settings
from queuectl.constants import JobState
from queuectl.db.connection import Database, close_db, init_db
from queuectl.db.models import Job
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.errors import QueueError
from queuectl.observability.logging import setup_logging
from queuectl.observability.tracing import instrument_sqlalchemy, setup_tracing
from queuectl.types.job import JobSubmission
from queuectl.worker.pidfile import (
    active_worker_count,
    is_process_alive,
    read_pid_file,
    remove_pid_file,
)
from queuectl.worker.pool import WorkerPool

TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass
class CliContext:
    settings: Settings
    database: Database


def _fail(error: Exception) -> click.ClickException:
    return click.ClickException(str(error))


def _print_jobs(jobs: list[Job]) -> None:
    click.echo(f"{'ID':<20} {'STATE':<12} {'ATTEMPTS':<10} {'MAX_RETRIES':<12} {'CREATED_AT':<25}")
    click.echo("-" * 80)
    for job in jobs:
        click.echo(
            f"{job.id:<20} {job.state.value:<12} {job.attempts:<10} "
            f"{job.max_retries:<12} {job.created_at.strftime(TIME_FORMAT):<25}"
        )


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="QUEUECTL_DATA_DIR",
    help="Directory holding jobs.db and worker.pid.",
)
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def cli(ctx: click.Context, data_dir: Path | None, log_level: str | None) -> None:
    """A CLI-based background job queue."""
    if data_dir is not None:
        os.environ["QUEUECTL_DATA_DIR"] = str(data_dir)
        get_settings.cache_clear()
    settings = get_settings()
    setup_logging(log_level=log_level)

    try:
        database = init_db()
    except QueueError as e:
        raise _fail(e) from e

    ctx.obj = CliContext(settings=settings, database=database)
    ctx.call_on_close(close_db)


@cli.command()
@click.argument("job_json")
@click.pass_obj
def enqueue(obj: CliContext, job_json: str) -> None:
    """Add a new job to the queue."""
    try:
        submission = JobSubmission.from_json(job_json)
        with obj.database.session() as session:
            job = JobRepository(session).create_job(submission)
    except QueueError as e:
        raise _fail(e) from e
    click.echo(f"Job enqueued successfully: {job.id}")


@cli.group()
def worker() -> None:
    """Manage worker processes."""


@worker.command("start")
@click.option("--count", "-c", default=1, show_default=True, type=click.IntRange(min=1))
@click.pass_obj
def worker_start(obj: CliContext, count: int) -> None:
    """Start workers in the foreground until SIGINT or SIGTERM."""
    marker = read_pid_file(obj.settings.pid_file)
    if marker is not None and marker[0] != os.getpid() and is_process_alive(marker[0]):
        raise click.ClickException(f"workers are already running (PID: {marker[0]})")

    setup_tracing()
    instrument_sqlalchemy(obj.database.engine)

    try:
        pool = WorkerPool(obj.database, worker_count=count, settings=obj.settings)
        pool.start()
    except QueueError as e:
        raise _fail(e) from e

    pool.install_signal_handlers()
    click.echo(f"Started {count} worker(s) (PID: {os.getpid()}). Press Ctrl+C to stop.")
    pool.run_until_stopped()
    click.echo("Workers stopped")


@worker.command("stop")
@click.option("--wait", default=10.0, show_default=True, help="Seconds to wait for shutdown.")
@click.pass_obj
def worker_stop(obj: CliContext, wait: float) -> None:
    """Gracefully stop the running worker process."""
    pid_file = obj.settings.pid_file
    marker = read_pid_file(pid_file)
    if marker is None:
        click.echo("No workers are running")
        return

    pid, _ = marker
    if not is_process_alive(pid):
        remove_pid_file(pid_file)
        click.echo("No workers are running (process already exited)")
        return

    os.kill(pid, signal.SIGTERM)
    click.echo(f"Sent stop signal to worker process (PID: {pid}). Waiting for graceful shutdown...")

    deadline = time.monotonic() + wait
    while time.monotonic() < deadline:
        if not is_process_alive(pid):
            remove_pid_file(pid_file)
            click.echo("Workers stopped successfully")
            return
        time.sleep(0.2)

    click.echo(
        f"Workers are still finishing in-flight jobs (PID: {pid}). "
        "They will exit once the current attempts complete."
    )


@cli.command()
@click.pass_obj
def status(obj: CliContext) -> None:
    """Show job counts by state and active workers."""
    with obj.database.session() as session:
        counts = JobRepository(session).counts_by_state()

    click.echo("Job Queue Status")
    click.echo("=" * 16)
    for state in JobState:
        click.echo(f"{state.value.capitalize() + ':':<12}{counts[state]}")
    click.echo()
    click.echo(f"Active Workers: {active_worker_count(obj.settings.pid_file)}")


@cli.command("list")
@click.option(
    "--state",
    "-s",
    type=click.Choice([s.value for s in JobState]),
    default=None,
    help="Filter jobs by state.",
)
@click.pass_obj
def list_jobs(obj: CliContext, state: str | None) -> None:
    """List jobs, optionally filtered by state."""
    job_state = JobState(state) if state else None
    with obj.database.session() as session:
        jobs = list(JobRepository(session).list_jobs(job_state))

    if not jobs:
        click.echo(f"No jobs found with state: {state}" if state else "No jobs found")
        return
    _print_jobs(jobs)


@cli.command()
@click.argument("job_id")
@click.pass_obj
def show(obj: CliContext, job_id: str) -> None:
    """Show details and output of a job."""
    try:
        with obj.database.session() as session:
            job = JobRepository(session).require_job(job_id)
    except QueueError as e:
        raise _fail(e) from e

    timeout = (
        f"{job.timeout_seconds} seconds"
        if job.timeout_seconds
        else f"default ({obj.settings.default_timeout_seconds}s)"
    )
    click.echo("Job Details")
    click.echo("=" * 80)
    click.echo(f"{'ID:':<20} {job.id}")
    click.echo(f"{'Command:':<20} {job.command}")
    click.echo(f"{'State:':<20} {job.state.value}")
    click.echo(f"{'Attempts:':<20} {job.attempts}")
    click.echo(f"{'Max Retries:':<20} {job.max_retries}")
    click.echo(f"{'Timeout:':<20} {timeout}")
    click.echo(f"{'Created At:':<20} {job.created_at.strftime(TIME_FORMAT)}")
    click.echo(f"{'Updated At:':<20} {job.updated_at.strftime(TIME_FORMAT)}")
    if job.next_retry_at is not None and job.state == JobState.PENDING:
        click.echo(f"{'Next Retry At:':<20} {job.next_retry_at.strftime(TIME_FORMAT)}")
    if job.last_error:
        click.echo(f"{'Last Error:':<20} {job.last_error}")

    click.echo("\nOutput")
    click.echo("-" * 80)
    click.echo(job.output or "(No output available)")


@cli.group()
def dlq() -> None:
    """Manage the dead letter queue."""


@dlq.command("list")
@click.pass_obj
def dlq_list(obj: CliContext) -> None:
    """List jobs in the dead letter queue."""
    with obj.database.session() as session:
        jobs = list(JobRepository(session).dlq_jobs())

    if not jobs:
        click.echo("No jobs in Dead Letter Queue")
        return
    click.echo(f"Dead Letter Queue Jobs ({len(jobs)})")
    click.echo("=" * 80)
    _print_jobs(jobs)


@dlq.command("retry")
@click.argument("job_id")
@click.option(
    "--reset-attempts/--keep-attempts",
    default=True,
    show_default=True,
    help="Reset the attempt counter so the job gets its full retry budget.",
)
@click.pass_obj
def dlq_retry(obj: CliContext, job_id: str, reset_attempts: bool) -> None:
    """Move a dead job back to pending."""
    try:
        with obj.database.session() as session:
            JobRepository(session).retry_from_dlq(job_id, reset_attempts=reset_attempts)
    except QueueError as e:
        raise _fail(e) from e
    click.echo(f"Job {job_id} has been reset to pending state and will be retried")


@cli.group()
def config() -> None:
    """Manage configuration such as max-retries and backoff-base."""


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set(obj: CliContext, key: str, value: str) -> None:
    """Set a configuration value."""
    try:
        with obj.database.session() as session:
            ConfigRepository(session).set(key, value)
    except QueueError as e:
        raise _fail(e) from e
    click.echo(f"Configuration '{key}' set to '{value}'")


@config.command("get")
@click.argument("key")
@click.pass_obj
def config_get(obj: CliContext, key: str) -> None:
    """Get a configuration value."""
    with obj.database.session() as session:
        value = ConfigRepository(session).get(key)
    if value is None:
        raise click.ClickException(f"config key not found: {key}")
    click.echo(value)


@config.command("list")
@click.pass_obj
def config_list(obj: CliContext) -> None:
    """List all configuration values."""
    with obj.database.session() as session:
        entries = ConfigRepository(session).all()

    if not entries:
        click.echo("No configuration set")
        return
    click.echo("Configuration:")
    click.echo("=" * 50)
    click.echo(f"{'KEY':<20} VALUE")
    click.echo("-" * 50)
    for key, value in entries.items():
        click.echo(f"{key:<20} {value}")


@cli.command()
@click.option("--host", default=None, help="Interface to bind.")
@click.option("--port", "-p", default=None, type=click.IntRange(1, 65535))
@click.pass_obj
def dashboard(obj: CliContext, host: str | None, port: int | None) -> None:
    """Start the read-only web dashboard."""
    from queuectl.api.main import run

    setup_tracing()
    run(obj.database, host=host, port=port)


def main() -> None:
    cli(prog_name="queuectl")


if __name__ == "__main__":
    sys.exit(main())
