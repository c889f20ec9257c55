"""Payload codecs for order events.

The dispatcher only depends on the OrderCodec protocol. Wire encoding is
pluggable; JsonOrderCodec is the implementation shipped here.
"""

from typing import Protocol

from pydantic import ValidationError

from core.errors.exceptions import DecodeError
from order_pipeline.orders.schemas import Order


class OrderCodec(Protocol):
    def decode(self, payload: bytes) -> Order: ...

    def encode(self, record: Order) -> bytes: ...


class JsonOrderCodec:
    """UTF-8 JSON using the orderId/product/price wire names."""

    def decode(self, payload: bytes) -> Order:
        """Decode and validate a payload.

        Raises:
            DecodeError: If the payload is not valid JSON or fails validation
        """
        try:
            return Order.model_validate_json(payload)
        except ValidationError as e:
            raise DecodeError(
                "Failed to decode order payload",
                cause=e,
                context={"payload_size": len(payload), "error_count": e.error_count()},
            ) from e

    def encode(self, record: Order) -> bytes:
        return record.model_dump_json(by_alias=True).encode("utf-8")


__all__ = ["JsonOrderCodec", "OrderCodec"]
