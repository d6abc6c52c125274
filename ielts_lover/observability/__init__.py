"""
Observability module - Logging, Metrics, Tracing and trace-id correlation.
"""

from ielts_lover.observability.correlation import TraceContext, generate_trace_id
from ielts_lover.observability.logging import get_logger, setup_logging
from ielts_lover.observability.metrics import metrics
from ielts_lover.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "TraceContext",
    "generate_trace_id",
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
