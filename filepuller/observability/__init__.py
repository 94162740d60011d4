"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from filepuller.observability.logging import bind_context, setup_logging
from filepuller.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from filepuller.observability.tracing import get_tracer, setup_tracing, shutdown_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "shutdown_tracing",
]
