"""Message transport context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_message_topic: ContextVar[str] = ContextVar("message_topic", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)
_message_key: ContextVar[str] = ContextVar("message_key", default="")
_message_consumer_group: ContextVar[str] = ContextVar("message_consumer_group", default="")


def get_message_context() -> Dict[str, Any]:
    """
    Get current message transport logging context.

    Returns:
        Dictionary with topic, partition, offset and, when set, key and consumer_group
    """
    context: Dict[str, Any] = {}

    topic = _message_topic.get()
    if topic:
        context["message_topic"] = topic
        context["message_partition"] = _message_partition.get()
        context["message_offset"] = _message_offset.get()

    key = _message_key.get()
    if key:
        context["message_key"] = key

    consumer_group = _message_consumer_group.get()
    if consumer_group:
        context["message_consumer_group"] = consumer_group

    return context


class MessageLogContext:
    """
    Context manager that tags every log line emitted while an envelope is handled.

    Usage:
        with MessageLogContext(topic="orders", partition=0, offset=12345, key="42"):
            await dispatcher.dispatch(envelope)
    """

    _FIELDS = ("topic", "partition", "offset", "key", "consumer_group")

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        consumer_group: Optional[str] = None,
    ):
        self.new_context = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "consumer_group": consumer_group,
        }
        self._tokens: list = []

    def __enter__(self) -> "MessageLogContext":
        variables = {
            "topic": _message_topic,
            "partition": _message_partition,
            "offset": _message_offset,
            "key": _message_key,
            "consumer_group": _message_consumer_group,
        }
        for name in self._FIELDS:
            value = self.new_context[name]
            if value is not None:
                self._tokens.append((variables[name], variables[name].set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Restore in reverse order so nested contexts unwind cleanly
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False
