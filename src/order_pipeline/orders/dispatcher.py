"""
Per-envelope dispatch: decode, process, then retry or dead-letter on failure.

Each inbound envelope runs through

    RECEIVED -> DECODING -> PROCESSING -> SUCCEEDED | ROUTING_RETRY | ROUTING_DLQ -> DONE

The dispatcher does not look at which topic the envelope arrived on; the
retry count header alone decides where a failing envelope goes next.
Payload bytes and key are carried unchanged onto the retry and DLQ topics.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Protocol

from config.config import PipelineConfig
from core.errors.exceptions import DecodeError
from core.logging import log_exception
from order_pipeline.common.metrics import record_dispatch_outcome, update_aggregate
from order_pipeline.common.types import MessageEnvelope, ProduceResult
from order_pipeline.dlq.metadata import DLQMetadata
from order_pipeline.orders.aggregator import AggregateSnapshot
from order_pipeline.orders.codec import OrderCodec
from order_pipeline.orders.processing import OrderProcessor
from order_pipeline.retry.delay_queue import DelayedRetryScheduler
from order_pipeline.retry.policy import EscalationDecision, EscalationPolicy
from order_pipeline.retry.retry_utils import (
    create_dlq_headers,
    create_retry_headers,
    log_retry_decision,
)
from order_pipeline.retry.tracker import extract_retry_count, increment_retry_count

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    async def send(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult: ...


class DispatchOutcome(Enum):
    SUCCEEDED = "succeeded"
    RETRIED = "retried"
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True)
class OrderTopics:
    orders: str = "orders"
    retry: str = "orders-retry"
    dlq: str = "orders-dlq"

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "OrderTopics":
        return cls(orders=config.orders_topic, retry=config.retry_topic, dlq=config.dlq_topic)


@dataclass(frozen=True)
class DispatchResult:
    """What happened to one envelope.

    published is the outbound retry or DLQ envelope (None on success);
    snapshot is the aggregate after a success (None otherwise).
    """

    outcome: DispatchOutcome
    key: str | None
    retry_count: int
    error: str | None = None
    published: MessageEnvelope | None = None
    snapshot: AggregateSnapshot | None = None


class OrderDispatcher:
    """Drives one envelope to a terminal outcome.

    With no scheduler, a retry publish is followed by an awaited backoff
    sleep before dispatch() returns, so the caller handles nothing else in
    the meantime. With a DelayedRetryScheduler the retry envelope is handed
    to the scheduler and dispatch() returns at once.

    Raises from dispatch():
        DecodeError: Payload could not be decoded (unless
            dead_letter_decode_errors is set, in which case it is dead-lettered)
        PublishError: Retry or DLQ publish failed
    """

    def __init__(
        self,
        codec: OrderCodec,
        processor: OrderProcessor,
        publisher: Publisher,
        policy: EscalationPolicy,
        topics: OrderTopics,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        scheduler: DelayedRetryScheduler | None = None,
        dead_letter_decode_errors: bool = False,
    ):
        self.codec = codec
        self.processor = processor
        self.publisher = publisher
        self.policy = policy
        self.topics = topics
        self._clock = clock
        self._sleep = sleep
        self.scheduler = scheduler
        self.dead_letter_decode_errors = dead_letter_decode_errors

        self._succeeded = 0
        self._retried = 0
        self._dead_lettered = 0

    async def dispatch(self, envelope: MessageEnvelope) -> DispatchResult:
        start_time = time.perf_counter()

        try:
            order = self.codec.decode(envelope.payload)
        except DecodeError as e:
            if not self.dead_letter_decode_errors:
                raise
            result = await self._route_to_dlq(envelope, extract_retry_count(envelope.headers), e)
            self._finish(result, start_time)
            return result

        try:
            snapshot = self.processor.process(order)
        except Exception as e:
            result = await self._escalate(envelope, e)
        else:
            update_aggregate(snapshot.count, snapshot.total, snapshot.average)
            result = DispatchResult(
                outcome=DispatchOutcome.SUCCEEDED,
                key=envelope.key,
                retry_count=extract_retry_count(envelope.headers),
                snapshot=snapshot,
            )

        self._finish(result, start_time)
        return result

    async def _escalate(self, envelope: MessageEnvelope, error: Exception) -> DispatchResult:
        retry_count = extract_retry_count(envelope.headers)
        log_exception(
            logger,
            error,
            "Order processing failed",
            level=logging.WARNING,
            include_traceback=False,
            message_key=envelope.key,
            retry_count=retry_count,
            max_retries=self.policy.max_retries,
        )

        if self.policy.decide(retry_count) is EscalationDecision.RETRY:
            return await self._route_to_retry(envelope, retry_count, error)
        return await self._route_to_dlq(envelope, retry_count, error)

    async def _route_to_retry(
        self,
        envelope: MessageEnvelope,
        retry_count: int,
        error: Exception,
    ) -> DispatchResult:
        next_count = increment_retry_count(envelope.headers)
        delay = self.policy.backoff_delay(retry_count)
        outbound = envelope.for_topic(self.topics.retry).with_headers(
            **create_retry_headers(
                retry_count=next_count,
                error=error,
                original_topic=self.topics.orders,
                attempted_at_ms=self._now_ms(),
            )
        )

        log_retry_decision(
            "retry",
            envelope.key,
            retry_count,
            error,
            extra_context={
                "target_topic": self.topics.retry,
                "delay_ms": _millis(delay),
                "max_retries": self.policy.max_retries,
            },
        )

        if self.scheduler is not None:
            self.scheduler.schedule(self.topics.retry, outbound, delay)
        else:
            await self.publisher.send(outbound.topic, outbound.key, outbound.payload, outbound.headers)
            await self._sleep(delay.total_seconds())

        return DispatchResult(
            outcome=DispatchOutcome.RETRIED,
            key=envelope.key,
            retry_count=next_count,
            error=str(error),
            published=outbound,
        )

    async def _route_to_dlq(
        self,
        envelope: MessageEnvelope,
        retry_count: int,
        error: Exception,
    ) -> DispatchResult:
        metadata = DLQMetadata(
            retry_count=retry_count,
            original_topic=self.topics.orders,
            error=str(error),
            timestamp=self._now_ms(),
        )
        outbound = envelope.for_topic(self.topics.dlq).with_headers(
            **create_dlq_headers(metadata.to_header(), error)
        )

        log_retry_decision(
            "dlq_exhausted",
            envelope.key,
            retry_count,
            error,
            extra_context={"target_topic": self.topics.dlq, "max_retries": self.policy.max_retries},
        )

        await self.publisher.send(outbound.topic, outbound.key, outbound.payload, outbound.headers)

        return DispatchResult(
            outcome=DispatchOutcome.DEAD_LETTERED,
            key=envelope.key,
            retry_count=retry_count,
            error=metadata.error,
            published=outbound,
        )

    def _finish(self, result: DispatchResult, start_time: float) -> None:
        duration = time.perf_counter() - start_time

        if result.outcome is DispatchOutcome.SUCCEEDED:
            self._succeeded += 1
            logger.info(
                "Dispatch complete",
                extra={
                    "message_key": result.key,
                    "outcome": result.outcome.value,
                    "retry_count": result.retry_count,
                    "duration_ms": round(duration * 1000, 2),
                },
            )
        else:
            if result.outcome is DispatchOutcome.RETRIED:
                self._retried += 1
            else:
                self._dead_lettered += 1
            logger.warning(
                "Dispatch complete",
                extra={
                    "message_key": result.key,
                    "outcome": result.outcome.value,
                    "error": result.error,
                    "retry_count": result.retry_count,
                    "target_topic": result.published.topic if result.published else None,
                    "duration_ms": round(duration * 1000, 2),
                },
            )

        record_dispatch_outcome(result.outcome.value, duration)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get_statistics(self) -> dict:
        return {
            "records_succeeded": self._succeeded,
            "records_retried": self._retried,
            "records_dead_lettered": self._dead_lettered,
        }


def _millis(delay: timedelta) -> int:
    return int(delay.total_seconds() * 1000)


__all__ = [
    "DispatchOutcome",
    "DispatchResult",
    "OrderDispatcher",
    "OrderTopics",
    "Publisher",
]
