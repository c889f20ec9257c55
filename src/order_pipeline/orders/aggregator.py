"""Running count, total and average over successfully processed orders."""

import threading
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class AggregateSnapshot:
    count: int = 0
    total: Decimal = Decimal(0)
    average: Decimal = Decimal(0)

    def as_dict(self) -> dict:
        return {
            "totalOrders": self.count,
            "runningTotal": self.total,
            "runningAverage": self.average,
        }


class OrderAggregator:
    """In-memory aggregate, reset on restart.

    update() changes count, total and average as one unit so no reader
    ever sees a partially applied update.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0
        self._total = Decimal(0)
        self._average = Decimal(0)

    def update(self, amount: Decimal) -> AggregateSnapshot:
        with self._lock:
            self._count += 1
            self._total += amount
            self._average = self._total / self._count
            return self._snapshot()

    def snapshot(self) -> AggregateSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> AggregateSnapshot:
        return AggregateSnapshot(count=self._count, total=self._total, average=self._average)


__all__ = ["AggregateSnapshot", "OrderAggregator"]
