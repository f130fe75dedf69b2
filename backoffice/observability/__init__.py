"""
Observability module - Logging, Metrics, and Tracing.
"""

from backoffice.observability.logging import get_logger, setup_logging
from backoffice.observability.metrics import metrics
from backoffice.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
