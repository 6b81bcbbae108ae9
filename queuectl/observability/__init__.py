"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from queuectl.observability.logging import bind_context, clear_context, get_logger, setup_logging
from queuectl.observability.metrics import (
    MetricsRecorder,
    StoreCollector,
    get_metrics,
    setup_metrics,
)
from queuectl.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "setup_metrics",
    "get_metrics",
    "MetricsRecorder",
    "StoreCollector",
    "setup_tracing",
    "get_tracer",
]
