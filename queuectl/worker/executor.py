"""
Shell command execution.

Runs one job's command under ``/bin/sh -c`` with a deadline and captures
stdout and stderr into a single buffer. The executor keeps no state and never
retries; every call yields exactly one ``JobResult``.
"""

import logging
import os
import signal
import subprocess
import time

from queuectl.constants import (
    DEFAULT_TIMEOUT_SECONDS,
    OUTPUT_DRAIN_SECONDS,
    SHELL,
    ExecutionOutcome,
)
from queuectl.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Kill the shell and everything it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_command(command: str, timeout_seconds: int | None = None) -> JobResult:
    """
    Run a shell command to completion or timeout.

    The command runs in its own session so a timeout can kill the whole
    process group; output written before the deadline is still returned.

    Args:
        command: Script body passed verbatim to the shell.
        timeout_seconds: Deadline; the 300 second default applies when unset.

    Returns:
        JobResult with one of SUCCESS, TIMEOUT, NON_ZERO_EXIT or SPAWN_FAILURE.
    """
    timeout = timeout_seconds or DEFAULT_TIMEOUT_SECONDS
    started = time.monotonic()

    try:
        proc = subprocess.Popen(
            [SHELL, "-c", command],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    except OSError as e:
        return JobResult(
            outcome=ExecutionOutcome.SPAWN_FAILURE,
            error=f"command execution failed: {e}",
            duration_ms=_elapsed_ms(started),
        )

    try:
        raw, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc)
        try:
            raw, _ = proc.communicate(timeout=OUTPUT_DRAIN_SECONDS)
        except subprocess.TimeoutExpired as e:
            # A child left the process group and still holds the pipe open
            raw = e.output
            proc.stdout.close()
            proc.wait()
        output = _decode(raw)
        return JobResult(
            outcome=ExecutionOutcome.TIMEOUT,
            output=output,
            exit_code=proc.returncode,
            error=f"job timeout after {timeout}s: {output}",
            duration_ms=_elapsed_ms(started),
        )

    output = _decode(raw)
    if proc.returncode != 0:
        return JobResult(
            outcome=ExecutionOutcome.NON_ZERO_EXIT,
            output=output,
            exit_code=proc.returncode,
            error=f"command exited with code {proc.returncode}: {output}",
            duration_ms=_elapsed_ms(started),
        )

    return JobResult(
        outcome=ExecutionOutcome.SUCCESS,
        output=output,
        exit_code=0,
        duration_ms=_elapsed_ms(started),
    )


def execute_job(context: JobContext) -> JobResult:
    """
    Execute a claimed job.

    Args:
        context: The job context.

    Returns:
        JobResult from the command run.
    """
    logger.info(
        "Executing job",
        extra={
            "job_id": context.job_id,
            "attempt": context.attempt,
            "timeout": context.timeout_seconds,
        },
    )
    result = run_command(context.command, context.timeout_seconds)

    if not result.success:
        logger.warning(
            "Job attempt failed",
            extra={
                "job_id": context.job_id,
                "outcome": result.outcome.value,
                "exit_code": result.exit_code,
                "attempt": context.attempt,
                "last_attempt": context.is_last_attempt,
            },
        )
    return result
