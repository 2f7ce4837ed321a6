"""
Observability module - Logging, Metrics, and Tracing.
"""

from studyabroad.observability.logging import get_logger, setup_logging
from studyabroad.observability.metrics import metrics
from studyabroad.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
