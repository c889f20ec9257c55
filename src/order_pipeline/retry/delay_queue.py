"""In-memory delay queue and scheduler for non-blocking retry backoff."""

import asyncio
import heapq
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta

from core.errors.exceptions import PublishError
from order_pipeline.common.metrics import update_pending_retries
from order_pipeline.common.types import MessageEnvelope
from order_pipeline.retry.tracker import extract_retry_count

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 0.1
DEFAULT_REQUEUE_DELAY_SECONDS = 5.0


@dataclass
class DelayedMessage:
    """A retry envelope waiting for its publish time."""

    scheduled_time: float
    target_topic: str
    envelope: MessageEnvelope
    sequence: int = 0
    retry_count: int = field(init=False)

    def __post_init__(self):
        self.retry_count = extract_retry_count(self.envelope.headers)

    def __lt__(self, other: "DelayedMessage") -> bool:
        """Order by scheduled_time, then by insertion order."""
        return (self.scheduled_time, self.sequence) < (other.scheduled_time, other.sequence)


class DelayQueue:
    """Min-heap of delayed messages ordered by scheduled_time.

    Messages scheduled for the same instant come out in the order they
    were pushed.
    """

    def __init__(self):
        self._heap: list[DelayedMessage] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def next_scheduled_time(self) -> float | None:
        if not self._heap:
            return None
        return self._heap[0].scheduled_time

    def push(self, message: DelayedMessage) -> None:
        message.sequence = next(self._counter)
        heapq.heappush(self._heap, message)

    def pop_ready(self, now: float) -> list[DelayedMessage]:
        """Pop all messages whose scheduled_time <= now."""
        ready = []
        while self._heap and self._heap[0].scheduled_time <= now:
            ready.append(heapq.heappop(self._heap))
        return ready

    def pop_all(self) -> list[DelayedMessage]:
        """Pop every message in schedule order."""
        return self.pop_ready(float("inf"))

    def requeue_with_delay(self, message: DelayedMessage, now: float, delay_seconds: float) -> None:
        """Put a message back with a new delay (e.g. after a publish failure)."""
        message.scheduled_time = now + delay_seconds
        self.push(message)


class DelayedRetryScheduler:
    """Publishes retry envelopes once their backoff has elapsed.

    The dispatcher hands envelopes over with schedule() and returns at once,
    so the consumer keeps handling later messages while retries wait. A
    background task publishes due messages. stop() publishes whatever is
    still pending without waiting for its delay.
    """

    def __init__(
        self,
        publisher,
        clock: Callable[[], float] = time.time,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        requeue_delay_seconds: float = DEFAULT_REQUEUE_DELAY_SECONDS,
    ):
        self._publisher = publisher
        self._clock = clock
        self._poll_interval = poll_interval_seconds
        self._requeue_delay = requeue_delay_seconds
        self._queue = DelayQueue()
        self._task: asyncio.Task | None = None
        self._running = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._running

    def schedule(self, topic: str, envelope: MessageEnvelope, delay: timedelta) -> DelayedMessage:
        message = DelayedMessage(
            scheduled_time=self._clock() + delay.total_seconds(),
            target_topic=topic,
            envelope=envelope,
        )
        self._queue.push(message)
        update_pending_retries(len(self._queue))

        logger.debug(
            "Scheduled delayed retry",
            extra={
                "target_topic": topic,
                "message_key": envelope.key,
                "retry_count": message.retry_count,
                "delay_ms": int(delay.total_seconds() * 1000),
                "queue_size": len(self._queue),
            },
        )
        return message

    async def start(self) -> None:
        if self._running:
            logger.warning("Retry scheduler already running, ignoring duplicate start call")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Delayed retry scheduler started")

    async def stop(self) -> None:
        """Stop the background task, then publish everything still pending."""
        if self._task is not None:
            self._running = False
            await self._task
            self._task = None

        pending = self._queue.pop_all()
        if pending:
            logger.info("Draining scheduled retries", extra={"queue_size": len(pending)})

        failed = 0
        for message in pending:
            if not await self._publish(message):
                failed += 1

        update_pending_retries(len(self._queue))
        if failed:
            logger.error(
                "Scheduled retries could not be published during shutdown",
                extra={"queue_size": failed},
            )
        logger.info("Delayed retry scheduler stopped")

    async def publish_ready(self) -> int:
        """Publish all due messages. Returns the number published."""
        published = 0
        for message in self._queue.pop_ready(self._clock()):
            if await self._publish(message):
                published += 1
        update_pending_retries(len(self._queue))
        return published

    async def _publish(self, message: DelayedMessage) -> bool:
        envelope = message.envelope
        try:
            await self._publisher.send(
                message.target_topic,
                envelope.key,
                envelope.payload,
                envelope.headers,
            )
        except PublishError as e:
            logger.error(
                "Failed to publish scheduled retry, requeueing",
                extra={
                    "target_topic": message.target_topic,
                    "message_key": envelope.key,
                    "retry_count": message.retry_count,
                    "error_message": str(e),
                },
            )
            self._queue.requeue_with_delay(message, self._clock(), self._requeue_delay)
            return False

        logger.debug(
            "Published scheduled retry",
            extra={
                "target_topic": message.target_topic,
                "message_key": envelope.key,
                "retry_count": message.retry_count,
            },
        )
        return True

    async def _run(self) -> None:
        while self._running:
            await self.publish_ready()
            await asyncio.sleep(self._poll_interval)


__all__ = [
    "DelayQueue",
    "DelayedMessage",
    "DelayedRetryScheduler",
]
