"""
Header builders for retry and dead-letter routing.

Retry and DLQ envelopes are built from the inbound envelope by merging
routing headers into its existing headers. Payload bytes and key are never
touched here.
"""

import logging
from typing import Any

from core.errors.exceptions import PipelineError
from order_pipeline.retry.tracker import RETRY_COUNT_HEADER

logger = logging.getLogger(__name__)

ERROR_HEADER = "error"
ORIGINAL_TOPIC_HEADER = "originalTopic"
LAST_ATTEMPT_AT_HEADER = "lastAttemptAt"
TIMESTAMP_HEADER = "timestamp"
DLQ_METADATA_HEADER = "dlqMetadata"
FINAL_ERROR_HEADER = "finalError"

# Log fields only; header values carry the full message
MAX_ERROR_LENGTH = 500


def truncate_error_message(error: Exception | str, max_length: int = MAX_ERROR_LENGTH) -> str:
    """
    Truncate error message to keep log fields small.

    Args:
        error: Exception or message text
        max_length: Maximum length of the returned text

    Returns:
        Message text, cut with an ellipsis if longer than max_length
    """
    error_message = str(error)
    if len(error_message) > max_length:
        return error_message[: max_length - 3] + "..."
    return error_message


def create_retry_headers(
    retry_count: int,
    error: Exception | str,
    original_topic: str,
    attempted_at_ms: int,
) -> dict[str, str]:
    """
    Create the routing headers for a retry-topic envelope.

    Args:
        retry_count: Count the retry envelope carries (already incremented)
        error: Failure that caused the retry
        original_topic: Primary topic name
        attempted_at_ms: Epoch millis of the failed attempt

    Returns:
        Dict of header key-value pairs to merge into the inbound headers
    """
    return {
        RETRY_COUNT_HEADER: str(retry_count),
        ERROR_HEADER: str(error),
        ORIGINAL_TOPIC_HEADER: original_topic,
        LAST_ATTEMPT_AT_HEADER: str(attempted_at_ms),
        TIMESTAMP_HEADER: str(attempted_at_ms),
    }


def create_dlq_headers(metadata_json: str, final_error: Exception | str) -> dict[str, str]:
    """Create the routing headers for a dead-letter envelope."""
    return {
        DLQ_METADATA_HEADER: metadata_json,
        FINAL_ERROR_HEADER: str(final_error),
    }


def log_retry_decision(
    action: str,
    message_key: str | None,
    retry_count: int,
    error: Exception,
    extra_context: dict[str, Any] | None = None,
) -> None:
    """
    Log a retry routing decision with consistent fields.

    Args:
        action: "retry" or "dlq_exhausted"
        message_key: Key of the failing envelope
        retry_count: Retry count of the failing envelope
        error: Exception that caused the failure
        extra_context: Additional fields to include
    """
    log_context = {
        "message_key": message_key,
        "retry_count": retry_count,
        "error_type": type(error).__name__,
        "error_message": truncate_error_message(error, 200),
    }
    if isinstance(error, PipelineError):
        log_context["error_category"] = error.category.value

    if extra_context:
        log_context.update(extra_context)

    if action == "dlq_exhausted":
        logger.warning("Retries exhausted, sending to DLQ", extra=log_context)
    elif action == "retry":
        logger.info("Sending message to retry topic", extra=log_context)


__all__ = [
    "DLQ_METADATA_HEADER",
    "ERROR_HEADER",
    "FINAL_ERROR_HEADER",
    "LAST_ATTEMPT_AT_HEADER",
    "MAX_ERROR_LENGTH",
    "ORIGINAL_TOPIC_HEADER",
    "TIMESTAMP_HEADER",
    "create_dlq_headers",
    "create_retry_headers",
    "log_retry_decision",
    "truncate_error_message",
]
