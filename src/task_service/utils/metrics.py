"""Prometheus metrics for observability."""

from functools import lru_cache

from prometheus_client import Counter, Gauge, Histogram, Info

from task_service import __version__


class Metrics:
    """Prometheus metrics for the task service."""

    def __init__(self) -> None:
        """Initialize all metrics."""
        self.info = Info(
            "task_service",
            "Task service information",
        )
        self.info.info({"version": __version__})

        # HTTP
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "route", "status"],
        )

        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
        )

        # Admission control
        self.auth_failures_total = Counter(
            "auth_failures_total",
            "Requests rejected by token validation",
            ["reason"],
        )

        self.rate_limit_rejections_total = Counter(
            "rate_limit_rejections_total",
            "Requests rejected by the rate limiter",
        )

        # Domain operations
        self.domain_operations_total = Counter(
            "domain_operations_total",
            "Total number of domain operations",
            ["operation", "entity", "status"],
        )

        # Webhooks
        self.webhook_events_total = Counter(
            "webhook_events_total",
            "Domain events emitted to the dispatcher",
            ["event"],
        )

        self.webhook_deliveries_total = Counter(
            "webhook_deliveries_total",
            "Webhook delivery attempts by outcome",
            ["event", "outcome"],
        )

        self.webhook_delivery_duration_seconds = Histogram(
            "webhook_delivery_duration_seconds",
            "Duration of a single webhook delivery attempt in seconds",
            ["event"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
        )

        self.webhook_queue_depth = Gauge(
            "webhook_queue_depth",
            "Deliveries waiting in the dispatch queue",
        )

        self.webhook_dead_letters_total = Counter(
            "webhook_dead_letters_total",
            "Deliveries that exhausted their retry budget",
            ["event"],
        )

    def record_http_request(
        self,
        method: str,
        route: str,
        status: int,
        duration: float,
    ) -> None:
        """Record an HTTP request metric.

        Args:
            method: HTTP method
            route: Route template (e.g. /tasks/{task_id})
            status: Response status code
            duration: Handling time in seconds
        """
        self.http_requests_total.labels(
            method=method,
            route=route,
            status=str(status),
        ).inc()
        self.http_request_duration_seconds.labels(
            method=method,
            route=route,
        ).observe(duration)

    def record_domain_operation(self, operation: str, entity: str, status: str) -> None:
        """Record a domain operation metric.

        Args:
            operation: Operation name (create, update, update_status)
            entity: Entity name (task, project, user)
            status: Operation status (success, error)
        """
        self.domain_operations_total.labels(
            operation=operation,
            entity=entity,
            status=status,
        ).inc()

    def record_webhook_delivery(self, event: str, outcome: str, duration: float) -> None:
        """Record one webhook delivery attempt.

        Args:
            event: Event type
            outcome: delivered, retry, failed
            duration: Attempt duration in seconds
        """
        self.webhook_deliveries_total.labels(event=event, outcome=outcome).inc()
        self.webhook_delivery_duration_seconds.labels(event=event).observe(duration)


@lru_cache
def get_metrics() -> Metrics:
    """Get cached metrics instance."""
    return Metrics()
