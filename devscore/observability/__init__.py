"""Observability layer - logging and metrics."""

from devscore.observability.logging import setup_logging
from devscore.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
