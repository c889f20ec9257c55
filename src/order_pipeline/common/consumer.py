"""Message consumer that feeds envelopes one at a time to a handler coroutine."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import IllegalStateError, KafkaError
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import (
    DEFAULT_MAX_POLL_INTERVAL_MS,
    DEFAULT_MAX_POLL_RECORDS,
    PipelineConfig,
)
from core.errors.exceptions import DecodeError, PublishError
from core.logging import MessageLogContext, log_exception
from core.utils import generate_worker_id
from order_pipeline.common.kafka_config import build_kafka_security_config
from order_pipeline.common.metrics import (
    record_decode_error,
    record_message_consumed,
)
from order_pipeline.common.types import MessageEnvelope, from_consumer_record

logger = logging.getLogger(__name__)


class MessageConsumer:
    """Async consumer with manual commits and strictly sequential handling.

    The handler for one envelope (including any blocking backoff it applies)
    completes before the next envelope is handed over. Offsets are committed
    after the handler returns.

    Error policy:
        DecodeError: logged, offset committed, message abandoned
        PublishError: logged and re-raised, stopping the loop
        anything else: logged, partition rewound to the failed offset so the
            message is redelivered; later records of that partition wait
        commit failure: logged, partition rewound to the next unhandled offset
    """

    REDELIVERY_PAUSE_SECONDS = 1.0

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
    )

    def __init__(
        self,
        config: PipelineConfig,
        topics: list[str],
        message_handler: Callable[[MessageEnvelope], Awaitable[Any]],
        group_id: str | None = None,
        worker_id: str | None = None,
    ):
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.topics = topics
        self.message_handler = message_handler
        self.group_id = group_id or config.group_id
        self.worker_id = worker_id or generate_worker_id(f"{config.client_id}-consumer")
        self.consumer_config = config.get_consumer_settings()

        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        self._loop_done = asyncio.Event()
        self._loop_done.set()

        logger.info(
            "Initialized message consumer",
            extra={
                "topics": topics,
                "group_id": self.group_id,
                "bootstrap_servers": config.bootstrap_servers,
            },
        )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": self.worker_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", DEFAULT_MAX_POLL_RECORDS),
            "max_poll_interval_ms": self.consumer_config.get(
                "max_poll_interval_ms", DEFAULT_MAX_POLL_INTERVAL_MS
            ),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def start(self) -> None:
        """Connect, subscribe and run the consumption loop until stopped."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info("Starting message consumer", extra={"topics": self.topics, "group_id": self.group_id})

        self._consumer = AIOKafkaConsumer(*self.topics, **self._build_kafka_config())
        await self._consumer.start()
        self._running = True
        self._loop_done.clear()

        logger.info(
            "Message consumer started successfully",
            extra={"topics": self.topics, "group_id": self.group_id},
        )

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception:
            logger.error("Consumer loop terminated with error", exc_info=True)
            raise
        finally:
            self._running = False
            await self._close()
            self._loop_done.set()

    async def stop(self) -> None:
        """Stop fetching and wait for the in-flight envelope to finish.

        An in-flight dispatch (including its backoff sleep) is not interrupted.
        """
        if not self._running:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping message consumer")
        self._running = False
        await self._loop_done.wait()
        logger.info("Message consumer stopped successfully")

    async def _close(self) -> None:
        if self._consumer is None:
            return
        try:
            await self._consumer.stop()
        except Exception:
            logger.error("Error stopping message consumer", exc_info=True)
        finally:
            self._consumer = None

    async def _consume_loop(self) -> None:
        logger.info("Starting message consumption loop", extra={"topics": self.topics, "group_id": self.group_id})

        while self._running and self._consumer:
            try:
                data = await self._consumer.getmany(timeout_ms=1000)
                rewound = False
                for tp, records in data.items():
                    for record in records:
                        if not self._running:
                            # Uncommitted records are redelivered after restart
                            return
                        resume_offset = await self._process_message(record)
                        if resume_offset is not None:
                            # Later records of this partition must not commit past resume_offset
                            self._rewind(tp, resume_offset)
                            rewound = True
                            break
                if rewound:
                    await asyncio.sleep(self.REDELIVERY_PAUSE_SECONDS)
            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except PublishError:
                raise
            except Exception:
                logger.error("Error in consumption loop", exc_info=True)
                await asyncio.sleep(1)

    async def _process_message(self, record: ConsumerRecord) -> int | None:
        """Handle one record and commit it.

        Returns None when the partition can move on, otherwise the offset the
        partition must be re-read from.
        """
        envelope = from_consumer_record(record)

        with MessageLogContext(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            key=envelope.key,
            consumer_group=self.group_id,
        ):
            record_message_consumed(record.topic)
            start_time = time.perf_counter()

            try:
                await self.message_handler(envelope)
            except DecodeError as e:
                record_decode_error()
                log_exception(
                    logger,
                    e,
                    "Undecodable message abandoned",
                    message_key=envelope.key,
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
            except PublishError as e:
                log_exception(
                    logger,
                    e,
                    "Publish failed while routing message - stopping consumer",
                    message_key=envelope.key,
                )
                raise
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Unexpected error handling message - redelivering from its offset",
                    message_key=envelope.key,
                )
                return record.offset

            try:
                await self._commit(record)
            except KafkaError as e:
                log_exception(
                    logger,
                    e,
                    "Offset commit failed - resuming after handled message",
                    message_key=envelope.key,
                )
                return record.offset + 1
            return None

    async def _commit(self, record: ConsumerRecord) -> None:
        if self._consumer is None:
            return
        tp = TopicPartition(record.topic, record.partition)
        await self._consumer.commit({tp: record.offset + 1})

    def _rewind(self, tp: TopicPartition, offset: int) -> None:
        if self._consumer is None:
            return
        try:
            self._consumer.seek(tp, offset)
        except IllegalStateError:
            # Partition revoked; its new owner resumes from the committed offset
            logger.warning(
                "Cannot rewind unassigned partition",
                extra={"topic": tp.topic, "partition": tp.partition, "offset": offset},
            )


    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = [
    "MessageConsumer",
]
