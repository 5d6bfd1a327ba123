"""Prometheus metrics for monitoring cancellations, refund settlement, and notification delivery"""

from prometheus_client import Counter, Histogram

# Cancellation request metrics
cancellation_request_counter = Counter(
    "refunds_cancellation_requests_total",
    "Cancellation requests created",
    ["mode"],  # automatic | manual
)

resolution_counter = Counter(
    "refunds_resolutions_total",
    "Cancellation requests resolved",
    ["action"],  # approved | rejected | automatic
)

# Settlement metrics
settlement_counter = Counter(
    "refunds_settlement_total",
    "Refund settlement outcomes",
    ["outcome"],  # completed | failed | skipped_no_reference
)

refund_amount_histogram = Histogram(
    "refunds_amount",
    "Refund amounts sent to the payment gateway",
    buckets=[0, 100, 500, 1_000, 2_500, 5_000, 10_000, 50_000],
)

gateway_failure_counter = Counter(
    "refunds_gateway_failures_total",
    "Failed payment gateway refund calls",
)

gateway_latency_histogram = Histogram(
    "refunds_gateway_latency_seconds",
    "Payment gateway refund call latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Notification metrics
notification_failure_counter = Counter(
    "refunds_notification_failures_total",
    "Notifications that could not be delivered",
    ["kind"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_settlement(outcome: str, amount: float | None = None) -> None:
    """Record settlement outcome and, for gateway calls, the refunded amount"""
    settlement_counter.labels(outcome=outcome).inc()
    if amount is not None:
        refund_amount_histogram.observe(amount)
