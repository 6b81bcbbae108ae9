"""
queuectl

A durable single-machine job queue for shell commands, with concurrent workers,
exponential-backoff retries and a dead letter queue.
"""

__version__ = "1.0.0"
