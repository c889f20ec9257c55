"""Tests for the processing step and failure sources."""

from decimal import Decimal

import pytest

from core.errors.exceptions import ProcessingError
from order_pipeline.orders.aggregator import OrderAggregator
from order_pipeline.orders.processing import OrderProcessor, RandomFailureSource
from order_pipeline.orders.schemas import Order


def _make_order(amount="10"):
    return Order(id="o-1", category="books", amount=Decimal(amount))


class TestRandomFailureSource:

    def test_zero_probability_never_fails(self):
        source = RandomFailureSource(probability=0.0)
        assert not any(source.should_fail() for _ in range(100))

    def test_full_probability_always_fails(self):
        source = RandomFailureSource(probability=1.0)
        assert all(source.should_fail() for _ in range(100))

    def test_seed_makes_sequence_reproducible(self):
        first = RandomFailureSource(0.5, seed=7)
        second = RandomFailureSource(0.5, seed=7)
        assert [first.should_fail() for _ in range(50)] == [second.should_fail() for _ in range(50)]

    @pytest.mark.parametrize("probability", [-0.1, 1.5])
    def test_rejects_out_of_range_probability(self, probability):
        with pytest.raises(ValueError):
            RandomFailureSource(probability)


class TestOrderProcessor:

    def test_success_updates_aggregate_once(self, scripted_failures):
        aggregator = OrderAggregator()
        processor = OrderProcessor(aggregator, scripted_failures([False]))

        snapshot = processor.process(_make_order("25"))

        assert snapshot.count == 1
        assert snapshot.total == Decimal("25")
        assert aggregator.snapshot() == snapshot

    def test_failure_raises_and_leaves_aggregate_untouched(self, always_fail):
        aggregator = OrderAggregator()
        processor = OrderProcessor(aggregator, always_fail)

        with pytest.raises(ProcessingError, match="Simulated temporary processing error"):
            processor.process(_make_order())

        assert aggregator.snapshot().count == 0
