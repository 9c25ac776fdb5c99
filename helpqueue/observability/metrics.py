"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from helpqueue.constants import (
    METRIC_COMMAND_LATENCY,
    METRIC_COMMANDS,
    METRIC_HELP_SESSION_DURATION,
    METRIC_OBSERVER_FAILURES,
    METRIC_QUEUE_DEPTH,
    METRIC_REQUESTERS_DEQUEUED,
    METRIC_REQUESTERS_ENQUEUED,
    METRIC_REQUESTERS_REMOVED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the help queue coordinator.

    Collects metrics for:
    - Queue depth
    - Requesters enqueued, dequeued and removed
    - Help session duration
    - Observer failures during fan-out
    - Dispatched commands
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of requesters waiting in a queue",
            ["server_id", "queue"],
            registry=self._registry,
        )

        self.requesters_enqueued = Counter(
            METRIC_REQUESTERS_ENQUEUED,
            "Total number of requesters that joined a queue",
            ["server_id", "queue"],
            registry=self._registry,
        )

        self.requesters_dequeued = Counter(
            METRIC_REQUESTERS_DEQUEUED,
            "Total number of requesters claimed by a helper",
            ["server_id", "queue"],
            registry=self._registry,
        )

        self.requesters_removed = Counter(
            METRIC_REQUESTERS_REMOVED,
            "Total number of requesters that left or were cleared",
            ["server_id", "queue", "reason"],
            registry=self._registry,
        )

        self.help_session_duration = Histogram(
            METRIC_HELP_SESSION_DURATION,
            "Helper session duration in seconds",
            ["server_id"],
            buckets=(60.0, 300.0, 900.0, 1800.0, 3600.0, 7200.0, 14400.0),
            registry=self._registry,
        )

        self.observer_failures = Counter(
            METRIC_OBSERVER_FAILURES,
            "Total number of observer failures during event fan-out",
            ["event"],
            registry=self._registry,
        )

        self.commands = Counter(
            METRIC_COMMANDS,
            "Total number of dispatched commands",
            ["command", "status"],
            registry=self._registry,
        )

        self.command_latency = Histogram(
            METRIC_COMMAND_LATENCY,
            "Command dispatch latency in seconds",
            ["command"],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self._registry,
        )

    def update_queue_depth(self, server_id: str, queue: str, depth: int) -> None:
        """Update queue depth for a queue."""
        self.queue_depth.labels(server_id=server_id, queue=queue).set(depth)

    def remove_queue(self, server_id: str, queue: str) -> None:
        """Drop the depth series of a deleted queue."""
        try:
            self.queue_depth.remove(server_id, queue)
        except KeyError:
            pass

    def record_enqueued(self, server_id: str, queue: str) -> None:
        """Record a requester joining a queue."""
        self.requesters_enqueued.labels(server_id=server_id, queue=queue).inc()

    def record_dequeued(self, server_id: str, queue: str) -> None:
        """Record a requester being claimed."""
        self.requesters_dequeued.labels(server_id=server_id, queue=queue).inc()

    def record_removed(
        self,
        server_id: str,
        queue: str,
        reason: str,
        count: int = 1,
    ) -> None:
        """Record requesters leaving a queue without being served."""
        if count <= 0:
            return
        self.requesters_removed.labels(
            server_id=server_id,
            queue=queue,
            reason=reason,
        ).inc(count)

    def record_help_session(self, server_id: str, duration_seconds: float) -> None:
        """Record a finished helper session."""
        self.help_session_duration.labels(server_id=server_id).observe(duration_seconds)

    def record_observer_failure(self, event: str, count: int = 1) -> None:
        """Record observers that raised during fan-out."""
        self.observer_failures.labels(event=event).inc(count)

    def record_command(
        self,
        command: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a dispatched command."""
        self.commands.labels(command=command, status=status).inc()
        self.command_latency.labels(command=command).observe(duration_seconds)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
