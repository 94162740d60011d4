"""
Prometheus metrics collection.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    start_http_server,
    REGISTRY,
)

from filepuller.constants import (
    METRIC_NOTIFICATIONS,
    METRIC_TRANSFER_DURATION,
    METRIC_BYTES_TRANSFERRED,
    METRIC_DELETE_FAILURES,
    METRIC_IN_FLIGHT,
    METRIC_SUBSCRIPTION_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the file puller.

    Collects metrics for:
    - Notifications by terminal outcome
    - Transfer duration and volume
    - Source object delete failures
    - Notifications in flight
    - Subscription-level errors
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.notifications = Counter(
            METRIC_NOTIFICATIONS,
            "Total number of notifications handled",
            ["outcome"],
            registry=self._registry,
        )

        self.transfer_duration = Histogram(
            METRIC_TRANSFER_DURATION,
            "Object retrieval duration in seconds",
            ["status"],
            buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.bytes_transferred = Counter(
            METRIC_BYTES_TRANSFERRED,
            "Total number of bytes written to the destination",
            registry=self._registry,
        )

        self.delete_failures = Counter(
            METRIC_DELETE_FAILURES,
            "Total number of source objects that could not be deleted",
            registry=self._registry,
        )

        self.in_flight = Gauge(
            METRIC_IN_FLIGHT,
            "Number of notifications currently being processed",
            registry=self._registry,
        )

        self.subscription_errors = Counter(
            METRIC_SUBSCRIPTION_ERRORS,
            "Total number of subscription-level errors",
            registry=self._registry,
        )

    def record_outcome(self, outcome: str) -> None:
        """Record the terminal decision taken for a notification."""
        self.notifications.labels(outcome=outcome).inc()

    def record_transfer(
        self,
        status: str,
        duration_seconds: float,
        size_bytes: int = 0,
    ) -> None:
        """Record a finished retrieval attempt."""
        self.transfer_duration.labels(status=status).observe(duration_seconds)
        if size_bytes:
            self.bytes_transferred.inc(size_bytes)

    def record_delete_failure(self) -> None:
        """Record a source object left behind after a successful transfer."""
        self.delete_failures.inc()

    def record_subscription_error(self) -> None:
        """Record an error raised by the subscription itself."""
        self.subscription_errors.inc()


def setup_metrics(port: int = 0) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: Port to expose the metrics endpoint on. 0 disables the endpoint.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
        if port:
            start_http_server(port, registry=_metrics._registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
