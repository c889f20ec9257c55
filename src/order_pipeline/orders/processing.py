"""The fallible processing step applied to each decoded order."""

import logging
import random
from typing import Protocol

from core.errors.exceptions import ProcessingError
from order_pipeline.orders.aggregator import AggregateSnapshot, OrderAggregator
from order_pipeline.orders.schemas import Order

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_RATE = 0.1
SIMULATED_FAILURE_MESSAGE = "Simulated temporary processing error"


class FailureSource(Protocol):
    def should_fail(self) -> bool: ...


class RandomFailureSource:
    """Fails with a fixed probability. Pass a seed for reproducible runs."""

    def __init__(self, probability: float = DEFAULT_FAILURE_RATE, seed: int | None = None):
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"probability must be within [0, 1], got {probability}")
        self.probability = probability
        self._random = random.Random(seed)

    def should_fail(self) -> bool:
        return self._random.random() < self.probability


class OrderProcessor:
    """Updates the aggregate for an order unless the failure source trips."""

    def __init__(self, aggregator: OrderAggregator, failure_source: FailureSource):
        self.aggregator = aggregator
        self.failure_source = failure_source

    def process(self, order: Order) -> AggregateSnapshot:
        """Process one order.

        Raises:
            ProcessingError: When the failure source reports a failure. The
                aggregate is left untouched.
        """
        if self.failure_source.should_fail():
            raise ProcessingError(SIMULATED_FAILURE_MESSAGE, context={"order_id": order.id})

        snapshot = self.aggregator.update(order.amount)
        logger.info(
            "Processed order",
            extra={
                "order_id": order.id,
                "category": order.category,
                "amount": str(order.amount),
                "total_orders": snapshot.count,
                "running_total": str(snapshot.total),
                "running_average": str(snapshot.average),
            },
        )
        return snapshot


__all__ = [
    "DEFAULT_FAILURE_RATE",
    "FailureSource",
    "OrderProcessor",
    "RandomFailureSource",
    "SIMULATED_FAILURE_MESSAGE",
]
