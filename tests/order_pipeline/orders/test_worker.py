"""Tests for OrderWorker wiring and lifecycle."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock, patch

import pytest

from config.config import PipelineConfig
from core.errors.exceptions import PublishError
from order_pipeline.orders.aggregator import OrderAggregator
from order_pipeline.retry.delay_queue import DelayedRetryScheduler


def _make_producer():
    producer = Mock()
    producer.start = AsyncMock()
    producer.stop = AsyncMock()
    producer.send = AsyncMock()
    return producer


def _make_worker(config=None, **kwargs):
    from order_pipeline.orders.worker import OrderWorker

    kwargs.setdefault("producer", _make_producer())
    return OrderWorker(config or PipelineConfig(stats_interval_seconds=3600), **kwargs)


class TestOrderWorkerInit:

    def test_policy_and_topics_from_config(self):
        worker = _make_worker(PipelineConfig(max_retries=5, retry_delay_ms=100, orders_topic="o"))

        assert worker.policy.max_retries == 5
        assert worker.policy.retry_delay_ms == 100
        assert worker.topics.orders == "o"
        assert worker.scheduler is None

    def test_scheduled_mode_builds_scheduler(self):
        worker = _make_worker(PipelineConfig(backoff_mode="scheduled"))

        assert isinstance(worker.scheduler, DelayedRetryScheduler)
        assert worker.dispatcher.scheduler is worker.scheduler

    def test_failure_source_from_config(self):
        worker = _make_worker(PipelineConfig(failure_rate=0.25, seed=3))
        assert worker.failure_source.probability == 0.25

    def test_decode_error_routing_flag_passed_through(self):
        worker = _make_worker(PipelineConfig(dead_letter_decode_errors=True))
        assert worker.dispatcher.dead_letter_decode_errors is True


class TestOrderWorkerStatistics:

    def test_statistics_combine_aggregate_and_dispatch_counts(self):
        aggregator = OrderAggregator()
        aggregator.update(Decimal("10"))
        aggregator.update(Decimal("20"))
        worker = _make_worker(aggregator=aggregator)

        stats = worker.get_statistics()

        assert stats["totalOrders"] == 2
        assert stats["runningTotal"] == Decimal("30")
        assert stats["runningAverage"] == Decimal("15")
        assert stats["running_average"] == Decimal("15")
        assert stats["records_retried"] == 0
        assert stats["records_dead_lettered"] == 0


class TestOrderWorkerLifecycle:

    async def test_run_stops_everything_on_shutdown_request(self):
        worker = _make_worker()
        consumer = Mock()
        consumer_stopped = asyncio.Event()

        async def consume():
            await consumer_stopped.wait()

        async def stop():
            consumer_stopped.set()

        consumer.start = AsyncMock(side_effect=consume)
        consumer.stop = AsyncMock(side_effect=stop)

        with patch("order_pipeline.orders.worker.MessageConsumer", return_value=consumer) as mock_cls:
            task = asyncio.create_task(worker.run())
            while not consumer.start.await_count:
                await asyncio.sleep(0)
            worker.request_shutdown()
            await task

        assert mock_cls.call_args.kwargs["topics"] == ["orders", "orders-retry"]
        assert mock_cls.call_args.kwargs["message_handler"] == worker.dispatcher.dispatch
        worker.producer.start.assert_awaited_once()
        consumer.stop.assert_awaited_once()
        worker.producer.stop.assert_awaited_once()
        assert not worker.is_running

    async def test_run_reraises_consumer_failure_after_cleanup(self):
        worker = _make_worker()
        consumer = Mock()
        consumer.start = AsyncMock(side_effect=PublishError("down", topic="orders-retry"))
        consumer.stop = AsyncMock()

        with (
            patch("order_pipeline.orders.worker.MessageConsumer", return_value=consumer),
            pytest.raises(PublishError),
        ):
            await worker.run()

        worker.producer.stop.assert_awaited_once()

    async def test_stop_drains_scheduler_before_closing_producer(self):
        worker = _make_worker(PipelineConfig(backoff_mode="scheduled"))
        calls = []
        worker.scheduler.stop = AsyncMock(side_effect=lambda: calls.append("scheduler"))
        worker.producer.stop = AsyncMock(side_effect=lambda: calls.append("producer"))

        await worker.stop()

        assert calls == ["scheduler", "producer"]
