"""Observability layer - logging and metrics."""

from mirror_indexer.observability.logging import setup_logging
from mirror_indexer.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
