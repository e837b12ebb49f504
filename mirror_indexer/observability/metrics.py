"""
Prometheus metrics for monitoring the indexer.

Defines and exposes metrics for:
- Enqueue and coalescing rates per instance
- Work item outcomes (stored, skipped, failed)
- Remote fetch latency
- Listing pages walked
- Dedup queue depth

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from mirror_indexer.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the mirror indexer.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_enqueue("research", accepted=True)
        metrics.record_outcome("research", "stored")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.requests_enqueued = Counter(
            "mirror_indexer_requests_enqueued_total",
            "Index requests accepted into a dedup queue",
            ["instance"],
        )

        self.requests_coalesced = Counter(
            "mirror_indexer_requests_coalesced_total",
            "Index requests dropped because the same key was outstanding",
            ["instance"],
        )

        self.items_processed = Counter(
            "mirror_indexer_items_processed_total",
            "Index requests processed",
            ["instance", "outcome"],  # stored, skipped, fetch_failed, parse_failed, store_failed
        )

        self.fetch_latency = Histogram(
            "mirror_indexer_fetch_latency_seconds",
            "Time to fetch and parse one remote page",
            ["instance", "endpoint"],  # listing, subject
            buckets=LATENCY_BUCKETS,
        )

        self.listing_pages = Counter(
            "mirror_indexer_listing_pages_total",
            "Listing pages walked by the backfill walker and scheduler",
            ["instance", "mode"],  # backfill, latest
        )

        self.search_errors = Counter(
            "mirror_indexer_search_errors_total",
            "Failed search index upserts",
            ["instance"],
        )

        self.queue_depth = Gauge(
            "mirror_indexer_queue_depth",
            "Outstanding work keys per instance",
            ["instance"],
        )

        self.instance_health = Gauge(
            "mirror_indexer_instance_health",
            "Instance health status (1=healthy, 0=unhealthy)",
            ["instance"],
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        port = port or get_settings().metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_enqueue(self, instance: str, accepted: bool) -> None:
        """Record an enqueue call and whether it was coalesced."""
        if accepted:
            self.requests_enqueued.labels(instance=instance).inc()
        else:
            self.requests_coalesced.labels(instance=instance).inc()

    def record_outcome(self, instance: str, outcome: str) -> None:
        self.items_processed.labels(instance=instance, outcome=outcome).inc()

    def record_fetch(self, instance: str, endpoint: str, latency: float) -> None:
        self.fetch_latency.labels(instance=instance, endpoint=endpoint).observe(latency)

    def record_listing_page(self, instance: str, mode: str) -> None:
        self.listing_pages.labels(instance=instance, mode=mode).inc()

    def record_search_error(self, instance: str) -> None:
        self.search_errors.labels(instance=instance).inc()

    def set_queue_depth(self, instance: str, depth: int) -> None:
        self.queue_depth.labels(instance=instance).set(depth)

    def set_instance_health(self, instance: str, healthy: bool) -> None:
        """
        Set instance health status.

        Args:
            instance: Source instance id
            healthy: Whether the instance's listing endpoint answers
        """
        self.instance_health.labels(instance=instance).set(1 if healthy else 0)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
