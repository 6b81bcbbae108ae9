"""
Worker module.
Contains the command executor, retry policy and the worker pool.
"""

from queuectl.worker.executor import execute_job, run_command
from queuectl.worker.pool import WorkerPool
from queuectl.worker.retry import backoff_delay, decide

__all__ = [
    "WorkerPool",
    "execute_job",
    "run_command",
    "backoff_delay",
    "decide",
]
