"""
Prometheus metrics for order fulfillment monitoring.

Tracks:
- Order creation outcomes and saga compensations
- Stock reservations and restocks
- Payment attempts and processing duration
- Cancellations and status transitions
"""
from prometheus_client import Counter, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total order creation attempts",
    ["outcome"],  # created, rejected, failed
)

order_saga_compensations_total = Counter(
    "order_saga_compensations_total",
    "Total order creation sagas that ran compensations",
)

order_cancellations_total = Counter(
    "order_cancellations_total",
    "Total cancelled orders",
)

order_status_transitions_total = Counter(
    "order_status_transitions_total",
    "Total order status transitions",
    ["from_status", "to_status"],
)

# Inventory metrics
stock_reservations_total = Counter(
    "stock_reservations_total",
    "Total stock reservation attempts",
    ["status"],  # reserved, insufficient, not_found
)

stock_restocks_total = Counter(
    "stock_restocks_total",
    "Total restock operations",
    ["status"],  # restocked, duplicate
)

# Payment metrics
payment_attempts_total = Counter(
    "payment_attempts_total",
    "Total payment gateway calls",
    ["outcome"],  # succeeded, failed
)

payment_processing_duration_seconds = Histogram(
    "payment_processing_duration_seconds",
    "Payment processing duration including retries, in seconds",
    ["outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(outcome: str) -> None:
        """Record an order creation outcome."""
        orders_created_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_saga_compensation() -> None:
        """Record a compensated order creation saga."""
        order_saga_compensations_total.inc()

    @staticmethod
    def record_cancellation() -> None:
        """Record an order cancellation."""
        order_cancellations_total.inc()

    @staticmethod
    def record_status_transition(from_status: str, to_status: str) -> None:
        """Record an order status transition."""
        order_status_transitions_total.labels(
            from_status=from_status, to_status=to_status
        ).inc()

    @staticmethod
    def record_reservation(status: str) -> None:
        """Record a stock reservation attempt."""
        stock_reservations_total.labels(status=status).inc()

    @staticmethod
    def record_restock(status: str) -> None:
        """Record a restock."""
        stock_restocks_total.labels(status=status).inc()

    @staticmethod
    def record_payment_attempt(outcome: str) -> None:
        """Record a single payment gateway call."""
        payment_attempts_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_payment_duration(outcome: str, duration_seconds: float) -> None:
        """Record payment processing duration."""
        payment_processing_duration_seconds.labels(outcome=outcome).observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
