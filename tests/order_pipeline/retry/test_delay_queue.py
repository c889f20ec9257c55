"""Tests for DelayQueue and DelayedRetryScheduler."""

from datetime import timedelta

from order_pipeline.common.types import MessageEnvelope
from order_pipeline.retry.delay_queue import DelayedMessage, DelayedRetryScheduler, DelayQueue


def _make_envelope(key="k1", retry_count="1"):
    return MessageEnvelope(
        topic="orders-retry",
        key=key,
        payload=b'{"orderId":"1"}',
        headers={"retryCount": retry_count},
    )


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestDelayQueue:

    def test_pop_ready_returns_only_due_messages(self):
        queue = DelayQueue()
        queue.push(DelayedMessage(10.0, "orders-retry", _make_envelope("a")))
        queue.push(DelayedMessage(20.0, "orders-retry", _make_envelope("b")))

        ready = queue.pop_ready(15.0)

        assert [m.envelope.key for m in ready] == ["a"]
        assert len(queue) == 1
        assert queue.next_scheduled_time == 20.0

    def test_same_time_keeps_push_order(self):
        queue = DelayQueue()
        for key in ("a", "b", "c"):
            queue.push(DelayedMessage(5.0, "orders-retry", _make_envelope(key)))

        assert [m.envelope.key for m in queue.pop_all()] == ["a", "b", "c"]

    def test_empty_queue_has_no_next_time(self):
        assert DelayQueue().next_scheduled_time is None

    def test_requeue_sets_new_time(self):
        queue = DelayQueue()
        message = DelayedMessage(1.0, "orders-retry", _make_envelope())

        queue.requeue_with_delay(message, now=100.0, delay_seconds=5.0)

        assert queue.next_scheduled_time == 105.0

    def test_delayed_message_reads_retry_count(self):
        assert DelayedMessage(1.0, "t", _make_envelope(retry_count="2")).retry_count == 2


class TestDelayedRetryScheduler:

    async def test_publishes_only_after_delay(self, publisher):
        clock = FakeClock()
        scheduler = DelayedRetryScheduler(publisher, clock=clock)
        scheduler.schedule("orders-retry", _make_envelope(), timedelta(seconds=2))

        assert await scheduler.publish_ready() == 0
        assert publisher.sent == []

        clock.now += 2
        assert await scheduler.publish_ready() == 1
        assert publisher.sent[0].topic == "orders-retry"
        assert publisher.sent[0].payload == b'{"orderId":"1"}'
        assert publisher.sent[0].headers == {"retryCount": "1"}
        assert len(scheduler) == 0

    async def test_publish_failure_requeues(self, failing_publisher):
        clock = FakeClock()
        scheduler = DelayedRetryScheduler(failing_publisher, clock=clock, requeue_delay_seconds=5.0)
        scheduler.schedule("orders-retry", _make_envelope(), timedelta(0))

        assert await scheduler.publish_ready() == 0
        assert len(scheduler) == 1
        assert scheduler._queue.next_scheduled_time == clock.now + 5.0

    async def test_stop_drains_pending_messages(self, publisher):
        scheduler = DelayedRetryScheduler(publisher, clock=FakeClock(), poll_interval_seconds=0.01)
        await scheduler.start()
        scheduler.schedule("orders-retry", _make_envelope("a"), timedelta(hours=1))
        scheduler.schedule("orders-retry", _make_envelope("b"), timedelta(hours=2))

        await scheduler.stop()

        assert [e.key for e in publisher.sent] == ["a", "b"]
        assert len(scheduler) == 0
        assert not scheduler.is_running

    async def test_stop_keeps_messages_that_fail_to_drain(self, failing_publisher):
        scheduler = DelayedRetryScheduler(failing_publisher, clock=FakeClock())
        scheduler.schedule("orders-retry", _make_envelope(), timedelta(seconds=1))

        await scheduler.stop()

        assert len(scheduler) == 1
