"""Tests for MessageConsumer."""

import asyncio
from unittest.mock import AsyncMock, Mock, call, patch

import pytest
from aiokafka.errors import CommitFailedError, IllegalStateError
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import PipelineConfig
from core.errors.exceptions import DecodeError, ProcessingError, PublishError
from order_pipeline.common.consumer import MessageConsumer


def _make_kafka_mock():
    """Create a mock AIOKafkaConsumer with sync/async methods set correctly."""
    mock = Mock()
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.commit = AsyncMock()
    mock.getmany = AsyncMock(return_value={})
    return mock


def _make_consumer_record(topic="orders", partition=0, offset=42, key=b"o-1", value=b"{}"):
    return ConsumerRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=1000,
        timestamp_type=0,
        key=key,
        value=value,
        headers=[("retryCount", b"1")],
        checksum=None,
        serialized_key_size=len(key) if key else 0,
        serialized_value_size=len(value) if value else 0,
    )


def _make_consumer(handler=None, **config_overrides):
    config = PipelineConfig(**config_overrides)
    return MessageConsumer(
        config=config,
        topics=config.input_topics,
        message_handler=handler or AsyncMock(),
        worker_id="test-worker-id",
    )


class TestMessageConsumerInit:

    def test_raises_on_empty_topics(self):
        with pytest.raises(ValueError, match="At least one topic"):
            MessageConsumer(config=PipelineConfig(), topics=[], message_handler=AsyncMock())

    def test_defaults_group_from_config(self):
        consumer = _make_consumer(group_id="g1")
        assert consumer.group_id == "g1"

    def test_generates_worker_id_from_client_id(self):
        with patch(
            "order_pipeline.common.consumer.generate_worker_id", return_value="wid"
        ) as mock_worker_id:
            consumer = MessageConsumer(
                config=PipelineConfig(client_id="orders-app"),
                topics=["orders"],
                message_handler=AsyncMock(),
            )

        mock_worker_id.assert_called_once_with("orders-app-consumer")
        assert consumer.worker_id == "wid"

    def test_kafka_config_disables_auto_commit(self):
        cfg = _make_consumer()._build_kafka_config()
        assert cfg["enable_auto_commit"] is False
        assert cfg["auto_offset_reset"] == "earliest"
        assert cfg["group_id"] == "order-consumer-group"

    async def test_primary_and_retry_topics_share_one_offset_reset(self):
        consumer = _make_consumer(consumer_settings={"auto_offset_reset": "latest"})
        kafka = _make_kafka_mock()

        async def getmany(timeout_ms):
            consumer._running = False
            return {}

        kafka.getmany.side_effect = getmany

        with patch(
            "order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka
        ) as mock_cls:
            await consumer.start()

        assert mock_cls.call_args.args == ("orders", "orders-retry")
        assert mock_cls.call_args.kwargs["auto_offset_reset"] == "latest"


class TestProcessMessage:

    async def test_success_commits_next_offset(self):
        handler = AsyncMock()
        consumer = _make_consumer(handler)
        consumer._consumer = _make_kafka_mock()

        await consumer._process_message(_make_consumer_record(offset=42))

        envelope = handler.await_args.args[0]
        assert envelope.key == "o-1"
        assert envelope.headers == {"retryCount": "1"}
        consumer._consumer.commit.assert_awaited_once_with({TopicPartition("orders", 0): 43})

    async def test_decode_error_commits_and_continues(self):
        consumer = _make_consumer(AsyncMock(side_effect=DecodeError("bad payload")))
        consumer._consumer = _make_kafka_mock()

        await consumer._process_message(_make_consumer_record())

        consumer._consumer.commit.assert_awaited_once()

    async def test_publish_error_propagates_without_commit(self):
        consumer = _make_consumer(
            AsyncMock(side_effect=PublishError("Failed to publish", topic="orders-retry"))
        )
        consumer._consumer = _make_kafka_mock()

        with pytest.raises(PublishError):
            await consumer._process_message(_make_consumer_record())

        consumer._consumer.commit.assert_not_awaited()

    async def test_unexpected_error_returns_failed_offset_without_commit(self):
        consumer = _make_consumer(AsyncMock(side_effect=ProcessingError("boom")))
        consumer._consumer = _make_kafka_mock()

        resume = await consumer._process_message(_make_consumer_record(offset=42))

        assert resume == 42
        consumer._consumer.commit.assert_not_awaited()

    async def test_commit_failure_returns_next_offset(self):
        consumer = _make_consumer()
        consumer._consumer = _make_kafka_mock()
        consumer._consumer.commit.side_effect = CommitFailedError("rebalanced")

        resume = await consumer._process_message(_make_consumer_record(offset=42))

        assert resume == 43

    async def test_success_returns_none(self):
        consumer = _make_consumer()
        consumer._consumer = _make_kafka_mock()

        assert await consumer._process_message(_make_consumer_record()) is None

    def test_rewind_tolerates_revoked_partition(self):
        consumer = _make_consumer()
        consumer._consumer = _make_kafka_mock()
        consumer._consumer.seek.side_effect = IllegalStateError("not assigned")

        consumer._rewind(TopicPartition("orders", 0), 5)


class TestConsumeLoop:

    async def test_handles_records_in_order_then_stops(self):
        seen = []
        consumer = _make_consumer()

        async def handler(envelope):
            seen.append(envelope.offset)
            if len(seen) == 3:
                consumer._running = False

        consumer.message_handler = handler
        kafka = _make_kafka_mock()
        tp = TopicPartition("orders", 0)
        kafka.getmany.return_value = {
            tp: [_make_consumer_record(offset=i) for i in range(3)],
        }

        with patch("order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka):
            await consumer.start()

        assert seen == [0, 1, 2]
        assert kafka.commit.await_count == 3
        kafka.stop.assert_awaited_once()
        assert not consumer.is_running

    async def test_publish_error_stops_loop(self):
        consumer = _make_consumer(AsyncMock(side_effect=PublishError("down", topic="orders-dlq")))
        kafka = _make_kafka_mock()
        kafka.getmany.return_value = {TopicPartition("orders", 0): [_make_consumer_record()]}

        with (
            patch("order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka),
            pytest.raises(PublishError),
        ):
            await consumer.start()

        kafka.stop.assert_awaited_once()

    async def test_stop_waits_for_loop_to_finish(self):
        consumer = _make_consumer()
        kafka = _make_kafka_mock()

        async def slow_getmany(timeout_ms):
            await asyncio.sleep(0.01)
            return {}

        kafka.getmany.side_effect = slow_getmany

        with patch("order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka):
            task = asyncio.create_task(consumer.start())
            while not consumer.is_running:
                await asyncio.sleep(0)
            await consumer.stop()

        await task
        kafka.stop.assert_awaited_once()

    async def test_failed_record_is_not_committed_past(self):
        consumer = _make_consumer()
        consumer.REDELIVERY_PAUSE_SECONDS = 0
        tp = TopicPartition("orders", 0)
        batch = {tp: [_make_consumer_record(offset=0), _make_consumer_record(offset=1)]}
        seen = []

        async def handler(envelope):
            seen.append(envelope.offset)
            if seen == [0]:
                raise RuntimeError("unexpected")

        async def getmany(timeout_ms):
            if kafka.getmany.await_count > 2:
                consumer._running = False
                return {}
            return batch

        consumer.message_handler = handler
        kafka = _make_kafka_mock()
        kafka.getmany.side_effect = getmany

        with patch("order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka):
            await consumer.start()

        # Offset 1 is held back until offset 0 has been redelivered and handled
        assert seen == [0, 0, 1]
        kafka.seek.assert_called_once_with(tp, 0)
        assert kafka.commit.await_args_list == [
            call({tp: 1}),
            call({tp: 2}),
        ]

    async def test_commit_failure_rewinds_to_next_unhandled_record(self):
        consumer = _make_consumer()
        consumer.REDELIVERY_PAUSE_SECONDS = 0
        tp = TopicPartition("orders", 0)
        seen = []

        async def handler(envelope):
            seen.append(envelope.offset)

        kafka = _make_kafka_mock()
        kafka.commit.side_effect = [CommitFailedError("rebalanced"), None]

        async def getmany(timeout_ms):
            if kafka.getmany.await_count > 1:
                consumer._running = False
                return {}
            return {tp: [_make_consumer_record(offset=0), _make_consumer_record(offset=1)]}

        consumer.message_handler = handler
        kafka.getmany.side_effect = getmany

        with patch("order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka):
            await consumer.start()

        assert seen == [0]
        kafka.seek.assert_called_once_with(tp, 1)

    async def test_rewind_only_holds_back_the_failed_partition(self):
        consumer = _make_consumer()
        consumer.REDELIVERY_PAUSE_SECONDS = 0
        failing = TopicPartition("orders", 0)
        healthy = TopicPartition("orders", 1)
        seen = []

        async def handler(envelope):
            seen.append((envelope.partition, envelope.offset))
            if envelope.partition == 0:
                raise RuntimeError("unexpected")

        kafka = _make_kafka_mock()

        async def getmany(timeout_ms):
            if kafka.getmany.await_count > 1:
                consumer._running = False
                return {}
            return {
                failing: [
                    _make_consumer_record(partition=0, offset=0),
                    _make_consumer_record(partition=0, offset=1),
                ],
                healthy: [_make_consumer_record(partition=1, offset=7)],
            }

        consumer.message_handler = handler
        kafka.getmany.side_effect = getmany

        with patch("order_pipeline.common.consumer.AIOKafkaConsumer", return_value=kafka):
            await consumer.start()

        assert seen == [(0, 0), (1, 7)]
        kafka.seek.assert_called_once_with(failing, 0)
        kafka.commit.assert_awaited_once_with({healthy: 8})
