"""
Order consumer worker.

Wires codec, processor, dispatcher, producer and consumer together and owns
their lifecycle.

Topics:
- Consumes: orders, orders-retry
- Produces: orders-retry (failed, budget left), orders-dlq (budget exhausted)

Shutdown stops fetching, lets the in-flight dispatch (including its backoff)
finish, drains scheduled retries, then flushes and closes the producer.
"""

import asyncio
import logging
from typing import Any

from config.config import PipelineConfig
from core.logging import PeriodicStatsLogger, log_startup_banner, log_worker_startup
from core.utils import generate_worker_id
from order_pipeline.common.consumer import MessageConsumer
from order_pipeline.common.producer import MessageProducer
from order_pipeline.orders.aggregator import OrderAggregator
from order_pipeline.orders.codec import JsonOrderCodec, OrderCodec
from order_pipeline.orders.dispatcher import OrderDispatcher, OrderTopics
from order_pipeline.orders.processing import FailureSource, OrderProcessor, RandomFailureSource
from order_pipeline.retry.delay_queue import DelayedRetryScheduler
from order_pipeline.retry.policy import EscalationPolicy

logger = logging.getLogger(__name__)


class OrderWorker:
    WORKER_NAME = "order_consumer"

    def __init__(
        self,
        config: PipelineConfig,
        aggregator: OrderAggregator | None = None,
        failure_source: FailureSource | None = None,
        codec: OrderCodec | None = None,
        producer: MessageProducer | None = None,
        instance_id: str | None = None,
    ):
        self.config = config
        self.instance_id = instance_id
        self.worker_id = generate_worker_id(
            f"{self.WORKER_NAME}-{instance_id}" if instance_id else self.WORKER_NAME
        )

        self.aggregator = aggregator or OrderAggregator()
        self.failure_source = failure_source or RandomFailureSource(
            probability=config.failure_rate,
            seed=config.seed,
        )
        self.codec = codec or JsonOrderCodec()
        self.producer = producer or MessageProducer(config, client_id=f"{config.client_id}-producer")
        self.policy = EscalationPolicy(
            max_retries=config.max_retries,
            retry_delay_ms=config.retry_delay_ms,
        )
        self.topics = OrderTopics.from_config(config)

        self.scheduler: DelayedRetryScheduler | None = None
        if config.backoff_mode == "scheduled":
            self.scheduler = DelayedRetryScheduler(self.producer)

        self.dispatcher = OrderDispatcher(
            codec=self.codec,
            processor=OrderProcessor(self.aggregator, self.failure_source),
            publisher=self.producer,
            policy=self.policy,
            topics=self.topics,
            scheduler=self.scheduler,
            dead_letter_decode_errors=config.dead_letter_decode_errors,
        )

        self._consumer: MessageConsumer | None = None
        self._stats_logger: PeriodicStatsLogger | None = None
        self._shutdown_event = asyncio.Event()
        self._running = False

        logger.info(
            "Initialized order worker",
            extra={
                "worker_id": self.worker_id,
                "topics": config.input_topics,
                "max_retries": config.max_retries,
                "delay_ms": config.retry_delay_ms,
            },
        )

    async def start(self) -> None:
        """Start all components and consume until the consumer stops.

        Raises:
            PublishError: If a retry or DLQ publish failed (fatal)
        """
        if self._running:
            logger.warning("Order worker already running, ignoring duplicate start")
            return

        log_worker_startup(
            logger,
            "Order Consumer",
            kafka_bootstrap_servers=self.config.bootstrap_servers,
            input_topics=self.config.input_topics,
            consumer_group=self.config.group_id,
        )
        log_startup_banner(
            logger,
            "Order Consumer",
            instance_id=self.worker_id,
            input_topics=", ".join(self.config.input_topics),
            retry_topic=self.topics.retry,
            dlq_topic=self.topics.dlq,
            max_retries=self.policy.max_retries,
            retry_delay_ms=self.policy.retry_delay_ms,
            backoff_mode=self.config.backoff_mode,
        )

        self._running = True
        await self.producer.start()
        if self.scheduler is not None:
            await self.scheduler.start()

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.config.stats_interval_seconds,
            get_stats=self.get_statistics,
            stage="order_consumer",
            worker_id=self.worker_id,
        )
        self._stats_logger.start()

        self._consumer = MessageConsumer(
            config=self.config,
            topics=self.config.input_topics,
            message_handler=self.dispatcher.dispatch,
            worker_id=self.worker_id,
        )

        try:
            await self._consumer.start()
        finally:
            self._running = False

    async def run(self) -> None:
        """Run until request_shutdown() is called or the consumer fails, then stop."""
        worker_task = asyncio.create_task(self.start(), name=self.worker_id)
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        await asyncio.wait(
            {worker_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        shutdown_task.cancel()

        await self.stop()
        # Shutdown requested before the consumer finished connecting
        if not worker_task.done():
            worker_task.cancel()
        try:
            # Re-raises a consumer failure
            await worker_task
        except asyncio.CancelledError:
            logger.info("Order worker cancelled during startup")

    def request_shutdown(self) -> None:
        """Ask run() to stop. Safe to call from a signal handler."""
        if not self._shutdown_event.is_set():
            logger.info("Shutdown requested")
            self._shutdown_event.set()

    async def stop(self) -> None:
        """Stop the worker gracefully. Safe to call multiple times."""
        logger.info("Stopping order worker")

        if self._consumer is not None:
            try:
                await self._consumer.stop()
            except Exception as e:
                logger.error("Error stopping consumer", extra={"error": str(e)})

        for name, coro in [
            ("stats_logger", self._stats_logger.stop() if self._stats_logger else None),
            ("scheduler", self.scheduler.stop() if self.scheduler else None),
        ]:
            if coro is None:
                continue
            try:
                await coro
            except Exception as e:
                logger.error("Error stopping %s", name, extra={"error": str(e)})
        self._stats_logger = None

        await self.producer.stop()

        snapshot = self.aggregator.snapshot()
        logger.info(
            "Order worker stopped",
            extra={
                "total_orders": snapshot.count,
                "running_total": str(snapshot.total),
                "running_average": str(snapshot.average),
                **self.dispatcher.get_statistics(),
            },
        )

    def get_statistics(self) -> dict[str, Any]:
        snapshot = self.aggregator.snapshot()
        return {
            **snapshot.as_dict(),
            **self.dispatcher.get_statistics(),
            "running_average": snapshot.average,
        }

    @property
    def is_running(self) -> bool:
        return self._running


__all__ = ["OrderWorker"]
