"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)

MAX_ERROR_MESSAGE_LENGTH = 500


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (message_key, retry_count, ...).
                  exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Order routed to retry topic",
            message_key=envelope.key,
            retry_count=2,
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Extracts error_category from PipelineError subclasses and truncates
    the error message.

    Example:
        try:
            order = codec.decode(envelope.payload)
        except DecodeError as e:
            log_exception(logger, e, "Order payload could not be decoded", message_key=envelope.key)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > MAX_ERROR_MESSAGE_LENGTH:
        error_msg = error_msg[:MAX_ERROR_MESSAGE_LENGTH] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    retried: int,
    dead_lettered: int,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
    running_average: Any = None,
) -> str:
    """
    Format standardized cycle output for the order worker with delta tracking.

    Args:
        cycle_count: Current cycle number
        succeeded: Total orders processed successfully
        retried: Total envelopes sent to the retry topic
        dead_lettered: Total envelopes sent to the dead-letter topic
        since_last: Optional delta counts since last cycle (same keys)
        interval_seconds: Cycle interval in seconds
        running_average: Current running average order amount, if any

    Example:
        >>> format_cycle_output(1, 120, 14, 2)
        'Cycle 1: handled=136 (succeeded=120, retried=14, dead_lettered=2)'
        >>> format_cycle_output(5, 120, 14, 2, {"succeeded": 24, "retried": 3, "dead_lettered": 0}, 30)
        'Cycle 5: +27 this cycle | total: 120 succeeded, 14 retried, 2 dead-lettered | 0.9 msg/s'
    """
    avg_suffix = f" | avg={running_average:.2f}" if running_average is not None else ""

    if since_last is not None:
        delta_total = (
            since_last.get("succeeded", 0)
            + since_last.get("retried", 0)
            + since_last.get("dead_lettered", 0)
        )
        rate = delta_total / interval_seconds if interval_seconds > 0 else 0

        total_parts = [f"{succeeded} succeeded"]
        if retried > 0:
            total_parts.append(f"{retried} retried")
        if dead_lettered > 0:
            total_parts.append(f"{dead_lettered} dead-lettered")

        parts = [
            f"+{delta_total} this cycle",
            f"total: {', '.join(total_parts)}",
            f"{rate:.1f} msg/s",
        ]
        return f"Cycle {cycle_count}: {' | '.join(parts)}{avg_suffix}"

    handled = succeeded + retried + dead_lettered
    return (
        f"Cycle {cycle_count}: handled={handled} "
        f"(succeeded={succeeded}, retried={retried}, dead_lettered={dead_lettered})"
        f"{avg_suffix}"
    )


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Example:
        log_startup_banner(
            logger,
            worker_name="Order Consumer",
            instance_id="orders-consumer-calm-blue-otter",
            input_topics="orders, orders-retry",
            dlq_topic="orders-dlq",
        )
    """
    separator = "=" * 50
    lines = ["", separator, worker_name, separator]

    labels = [
        ("instance_id", "Instance:     {}"),
        ("input_topics", "Input Topics: {}"),
        ("retry_topic", "Retry Topic:  {}"),
        ("dlq_topic", "DLQ Topic:    {}"),
        ("max_retries", "Max Retries:  {}"),
        ("retry_delay_ms", "Retry Delay:  {} ms"),
        ("backoff_mode", "Backoff Mode: {}"),
    ]
    for field_name, fmt in labels:
        value = kwargs.get(field_name)
        if value is not None and value != "":
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))
