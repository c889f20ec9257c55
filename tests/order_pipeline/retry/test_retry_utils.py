"""Tests for retry and DLQ header builders."""

import logging

from core.errors.exceptions import ProcessingError
from order_pipeline.retry.retry_utils import (
    create_dlq_headers,
    create_retry_headers,
    log_retry_decision,
    truncate_error_message,
)


class TestTruncateErrorMessage:

    def test_short_message_unchanged(self):
        assert truncate_error_message(ValueError("boom")) == "boom"

    def test_long_message_truncated_with_ellipsis(self):
        result = truncate_error_message("x" * 600)
        assert len(result) == 500
        assert result.endswith("...")

    def test_custom_length(self):
        assert truncate_error_message("abcdefghij", max_length=6) == "abc..."


class TestCreateRetryHeaders:

    def test_contains_all_routing_headers(self):
        headers = create_retry_headers(
            retry_count=2,
            error=ProcessingError("Simulated temporary processing error"),
            original_topic="orders",
            attempted_at_ms=1700000000000,
        )

        assert headers == {
            "retryCount": "2",
            "error": "Simulated temporary processing error",
            "originalTopic": "orders",
            "lastAttemptAt": "1700000000000",
            "timestamp": "1700000000000",
        }

    def test_long_error_carried_in_full(self):
        error = "x" * 600
        headers = create_retry_headers(1, ProcessingError(error), "orders", 5)
        assert headers["error"] == error

    def test_all_values_are_strings(self):
        headers = create_retry_headers(1, "err", "orders", 5)
        assert all(isinstance(v, str) for v in headers.values())


class TestCreateDlqHeaders:

    def test_carries_metadata_and_final_error(self):
        headers = create_dlq_headers('{"retryCount":3}', "gave up")
        assert headers == {"dlqMetadata": '{"retryCount":3}', "finalError": "gave up"}

    def test_long_final_error_carried_in_full(self):
        assert create_dlq_headers("{}", "y" * 600)["finalError"] == "y" * 600


class TestLogRetryDecision:

    def test_retry_logged_at_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="order_pipeline.retry.retry_utils"):
            log_retry_decision("retry", "k1", 0, ProcessingError("boom"))

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.message_key == "k1"
        assert record.error_category == "transient"

    def test_exhausted_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="order_pipeline.retry.retry_utils"):
            log_retry_decision("dlq_exhausted", "k1", 3, RuntimeError("boom"), {"target_topic": "orders-dlq"})

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.target_topic == "orders-dlq"
        assert not hasattr(record, "error_category")
