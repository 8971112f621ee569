"""
Observability utilities for the ENI IP webhook.

This module provides metrics and structured logging capabilities for
production monitoring and troubleshooting.
"""

from .logging import set_correlation_id, setup_structured_logging
from .metrics import MetricsServer, metrics_collector

__all__ = [
    "MetricsServer",
    "metrics_collector",
    "set_correlation_id",
    "setup_structured_logging",
]
