"""Transport-agnostic message types."""

from dataclasses import dataclass, field, replace
from typing import Any

__all__ = [
    "MessageEnvelope",
    "ProduceResult",
    "decode_headers",
    "encode_text",
    "from_consumer_record",
]


@dataclass(frozen=True)
class MessageEnvelope:
    """Key/payload/headers unit flowing between topics.

    Envelopes are immutable. Re-publishing with extra headers produces a new
    envelope via with_headers(); the payload bytes are never re-encoded.
    Broker provenance (partition, offset, timestamp) is -1/0 for envelopes
    built locally.

    Key and header bytes that are not valid UTF-8 are kept as lone surrogates
    (surrogateescape) so they re-encode to the exact bytes received.
    """

    topic: str
    key: str | None
    payload: bytes
    headers: dict[str, str] = field(default_factory=dict)
    partition: int = -1
    offset: int = -1
    timestamp: int = 0

    def with_headers(self, **updates: str) -> "MessageEnvelope":
        """Return a copy whose headers are this envelope's headers merged with updates."""
        return replace(self, headers={**self.headers, **updates})

    def for_topic(self, topic: str) -> "MessageEnvelope":
        """Return a locally-built copy addressed to another topic."""
        return replace(self, topic=topic, partition=-1, offset=-1, timestamp=0)


@dataclass(frozen=True)
class ProduceResult:
    """Transport-agnostic confirmation of a published message."""

    topic: str
    partition: int
    offset: int


def _decode_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="surrogateescape")
    return str(value)


def encode_text(value: str) -> bytes:
    """Inverse of the consumer-side decoding; restores undecodable bytes unchanged."""
    return value.encode("utf-8", errors="surrogateescape")


def decode_headers(raw_headers: Any) -> dict[str, str]:
    """Convert aiokafka's header sequence of (str, bytes) pairs to a str->str dict.

    Later duplicates win, matching how the headers were merged when produced.
    """
    if not raw_headers:
        return {}
    return {str(k): _decode_text(v) for k, v in raw_headers}


def from_consumer_record(record) -> MessageEnvelope:
    """Convert aiokafka ConsumerRecord to MessageEnvelope."""
    return MessageEnvelope(
        topic=record.topic,
        key=_decode_text(record.key) if record.key is not None else None,
        payload=record.value if record.value is not None else b"",
        headers=decode_headers(getattr(record, "headers", None)),
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
    )
