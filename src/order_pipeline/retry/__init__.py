"""Retry counting, escalation decisions and retry routing headers."""

from order_pipeline.retry.policy import (
    EscalationDecision,
    EscalationPolicy,
    backoff_delay,
    decide,
)
from order_pipeline.retry.tracker import (
    RETRY_COUNT_HEADER,
    extract_retry_count,
    increment_retry_count,
)

__all__ = [
    "RETRY_COUNT_HEADER",
    "EscalationDecision",
    "EscalationPolicy",
    "backoff_delay",
    "decide",
    "extract_retry_count",
    "increment_retry_count",
]
