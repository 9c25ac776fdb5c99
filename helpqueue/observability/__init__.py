"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from helpqueue.observability.logging import command_context, setup_logging
from helpqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from helpqueue.observability.tracing import annotate, get_tracer, setup_tracing, traced_span

__all__ = [
    "setup_logging",
    "command_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "traced_span",
    "annotate",
]
