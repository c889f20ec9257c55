"""
Prometheus metrics for the order pipeline.

Focused on essential metrics:
- Message consumption and production counts
- Dispatch outcomes (succeeded / retried / dead-lettered)
- Decode errors
- Running aggregate (count, total, average)
"""

import logging
import socket

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

messages_consumed_total = Counter(
    "orders_messages_consumed_total",
    "Envelopes delivered to the dispatch loop",
    ["topic"],
)

messages_produced_total = Counter(
    "orders_messages_produced_total",
    "Envelopes published by the producer",
    ["topic", "success"],
)

dispatch_outcomes_total = Counter(
    "orders_dispatch_outcomes_total",
    "Terminal dispatch outcomes",
    ["outcome"],
)

decode_errors_total = Counter(
    "orders_decode_errors_total",
    "Envelopes whose payload could not be decoded",
)

dispatch_duration_seconds = Histogram(
    "orders_dispatch_duration_seconds",
    "Time spent dispatching one envelope, including blocking backoff",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

aggregate_count = Gauge("orders_aggregate_count", "Successfully processed orders")
aggregate_total = Gauge("orders_aggregate_total", "Running total of processed order amounts")
aggregate_average = Gauge("orders_aggregate_average", "Running average of processed order amounts")

pending_scheduled_retries = Gauge(
    "orders_pending_scheduled_retries",
    "Retries waiting in the delayed republish queue",
)


def record_message_consumed(topic: str) -> None:
    messages_consumed_total.labels(topic=topic).inc()


def record_message_produced(topic: str, success: bool) -> None:
    messages_produced_total.labels(topic=topic, success=str(success).lower()).inc()


def record_dispatch_outcome(outcome: str, duration_seconds: float | None = None) -> None:
    dispatch_outcomes_total.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        dispatch_duration_seconds.observe(duration_seconds)


def record_decode_error() -> None:
    decode_errors_total.inc()


def update_aggregate(count: int, total, average) -> None:
    """Mirror an aggregate snapshot into gauges (Decimal values are converted to float)."""
    aggregate_count.set(count)
    aggregate_total.set(float(total))
    aggregate_average.set(float(average))


def update_pending_retries(size: int) -> None:
    pending_scheduled_retries.set(size)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.

    Returns the port the server is listening on.
    """
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]

        start_http_server(available_port, registry=REGISTRY)
        return available_port
