"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer


def _encodable(text: str) -> str:
    """Escape lone surrogates (undecodable key bytes) so UTF-8 handlers can write the line."""
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Dispatch outcome
        "outcome",
        "retry_count",
        "max_retries",
        "delay_ms",
        "target_topic",
        "source_topic",
        # Errors
        "error_category",
        "error_message",
        "error",
        "error_type",
        # Records
        "order_id",
        "category",
        "amount",
        # Aggregate state
        "total_orders",
        "running_total",
        "running_average",
        # Processing metrics
        "records_succeeded",
        "records_retried",
        "records_dead_lettered",
        "duration_ms",
        "batch_size",
        "queue_size",
        # Message transport metadata
        "message_topic",
        "message_partition",
        "message_offset",
        "message_key",
        "message_consumer_group",
        "partition",
        "offset",
        "group_id",
        "topics",
    ]

    # Numeric fields are coerced so downstream queries can aggregate them
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "delay_ms": float,
        "retry_count": int,
        "max_retries": int,
        "total_orders": int,
        "records_succeeded": int,
        "records_retried": int,
        "records_dead_lettered": int,
        "batch_size": int,
        "queue_size": int,
        "message_partition": int,
        "message_offset": int,
        "partition": int,
        "offset": int,
    }

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Coerce a field to its expected numeric type.

        Returns None if conversion fails (null is preferred over invalid data).
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in ("domain", "stage", "cycle_id", "worker_id"):
            if log_context.get(field):
                log_entry[field] = log_context[field]

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._ensure_type(field, value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())
        log_entry.update(get_message_context())

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Explicit extras win over ambient message context
        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return _encodable(json.dumps(log_entry, default=json_serializer, ensure_ascii=False))


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context.get("domain"):
            parts.append(f"[{log_context['domain']}]")
        if log_context.get("stage"):
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord, message_context: dict[str, Any]) -> list[str]:
        key = getattr(record, "message_key", None) or message_context.get("message_key")
        retry_count = getattr(record, "retry_count", None)

        tags = []
        if key:
            tags.append(f"[key:{key}]")
        if retry_count is not None:
            tags.append(f"[retry:{retry_count}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, get_log_context())
        tags = self._build_tags(record, get_message_context())

        message = record.getMessage()
        if tags:
            message = f"{' '.join(tags)} {message}"

        line = f"{prefix} - {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return _encodable(line)
