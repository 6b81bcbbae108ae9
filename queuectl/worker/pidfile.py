"""
Liveness marker for a running worker pool.

The pid file holds two lines: the pid of the process hosting the pool and its
worker count. Other invocations of the CLI use it to report and stop workers.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def write_pid_file(path: Path, worker_count: int, pid: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{pid or os.getpid()}\n{worker_count}\n")


def read_pid_file(path: Path) -> tuple[int, int] | None:
    """
    Read (pid, worker_count) from the marker.

    Returns:
        None when the file is missing or unreadable. A file with only a pid
        reports one worker.
    """
    try:
        lines = path.read_text().split()
    except FileNotFoundError:
        return None
    if not lines:
        return None
    try:
        pid = int(lines[0])
        count = int(lines[1]) if len(lines) > 1 else 1
    except ValueError:
        logger.warning("Invalid pid file format", extra={"path": str(path)})
        return None
    return pid, count


def remove_pid_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def is_process_alive(pid: int) -> bool:
    """Probe a pid with signal 0."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def active_worker_count(path: Path) -> int:
    """Worker count recorded by a live pool, 0 if none is running."""
    marker = read_pid_file(path)
    if marker is None:
        return 0
    pid, count = marker
    return count if is_process_alive(pid) else 0
