"""Order decoding, processing, aggregation and dispatch."""

from order_pipeline.orders.aggregator import AggregateSnapshot, OrderAggregator
from order_pipeline.orders.codec import JsonOrderCodec, OrderCodec
from order_pipeline.orders.dispatcher import (
    DispatchOutcome,
    DispatchResult,
    OrderDispatcher,
    OrderTopics,
)
from order_pipeline.orders.processing import (
    FailureSource,
    OrderProcessor,
    RandomFailureSource,
)
from order_pipeline.orders.schemas import Order

__all__ = [
    "AggregateSnapshot",
    "DispatchOutcome",
    "DispatchResult",
    "FailureSource",
    "JsonOrderCodec",
    "Order",
    "OrderAggregator",
    "OrderCodec",
    "OrderDispatcher",
    "OrderProcessor",
    "OrderTopics",
    "RandomFailureSource",
]
