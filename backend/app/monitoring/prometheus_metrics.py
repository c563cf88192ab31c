"""
Prometheus metrics module for the payments backend.

Service timings come from the @measure_operation decorator; the domain
counters below track webhook handling, payout transfers and notification
delivery.
"""

from threading import Lock
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "coachmarket_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "coachmarket_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "coachmarket_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Domain-specific custom counters
webhook_events_total = Counter(
    "coachmarket_webhook_events_total",
    "Stripe webhook events by type and outcome",
    ["event_type", "outcome"],  # processed | duplicate | ignored | failed
    registry=REGISTRY,
)

webhook_handler_retries_total = Counter(
    "coachmarket_webhook_handler_retries_total",
    "Webhook handler attempts that failed and were retried",
    ["event_type"],
    registry=REGISTRY,
)

payout_transfers_total = Counter(
    "coachmarket_payout_transfers_total",
    "Coach payout transfers by payout type and outcome",
    ["payout_type", "status"],  # scheduled | early ; success | error
    registry=REGISTRY,
)

notifications_total = Counter(
    "coachmarket_notifications_total",
    "Notification emails by template and outcome",
    ["template", "status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Static helpers that record into the custom registry."""

    _cache_lock = Lock()
    _cache_payload: Optional[bytes] = None

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'SessionPaymentService')
            operation: Operation name (e.g., 'create_session_payment_intent')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_webhook_retry(event_type: str) -> None:
        webhook_handler_retries_total.labels(event_type=event_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_payout_transfer(payout_type: str, status: str) -> None:
        payout_transfers_total.labels(payout_type=payout_type, status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_notification(template: str, status: str) -> None:
        notifications_total.labels(template=template, status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        with PrometheusMetrics._cache_lock:
            if PrometheusMetrics._cache_payload is None:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
