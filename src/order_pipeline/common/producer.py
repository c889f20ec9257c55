"""Message producer: the publisher adapter used for retry and dead-letter routing."""

import asyncio
import logging
from typing import Any

from aiokafka import AIOKafkaProducer

from config.config import PipelineConfig
from core.errors.exceptions import PublishError
from order_pipeline.common.kafka_config import build_kafka_security_config
from order_pipeline.common.metrics import record_message_produced
from order_pipeline.common.types import MessageEnvelope, ProduceResult, encode_text

logger = logging.getLogger(__name__)


class MessageProducer:
    """Async producer that publishes opaque payload bytes with string headers.

    Headers are sent exactly as given (UTF-8 encoded values, insertion order
    kept) and payload bytes are passed through untouched. Broker failures are
    surfaced as PublishError; retried delivery is the retry topic's job.
    """

    def __init__(self, config: PipelineConfig, client_id: str | None = None):
        self.config = config
        self.client_id = client_id or f"{config.client_id}-producer"
        self._producer: AIOKafkaProducer | None = None
        self._started = False
        self.producer_config = config.get_producer_settings()

        logger.info(
            "Initialized message producer",
            extra={
                "bootstrap_servers": config.bootstrap_servers,
                "security_protocol": config.security_protocol,
                "producer_config": self.producer_config,
            },
        )

    def _resolve_acks_and_idempotence(self) -> tuple[Any, bool]:
        """Resolve acks value and idempotence setting, enforcing mutual constraints."""
        acks_value = self.producer_config.get("acks", "all")
        if isinstance(acks_value, str) and acks_value.isdigit():
            acks_value = int(acks_value)

        enable_idempotence = self.producer_config.get("enable_idempotence", True)
        if enable_idempotence and acks_value != "all":
            logger.warning(
                "Overriding acks to 'all' because enable_idempotence=True requires it",
                extra={"configured_acks": acks_value},
            )
            acks_value = "all"

        return acks_value, enable_idempotence

    def _build_kafka_config(self) -> dict[str, Any]:
        acks_value, enable_idempotence = self._resolve_acks_and_idempotence()

        kafka_config: dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "client_id": self.client_id,
            "value_serializer": lambda v: v,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "acks": acks_value,
            "enable_idempotence": enable_idempotence,
            "retry_backoff_ms": self.producer_config.get("retry_backoff_ms", 500),
        }

        if "linger_ms" in self.producer_config:
            kafka_config["linger_ms"] = self.producer_config["linger_ms"]

        if "compression_type" in self.producer_config:
            compression = self.producer_config["compression_type"]
            kafka_config["compression_type"] = None if compression == "none" else compression

        kafka_config.update(build_kafka_security_config(self.config))
        return kafka_config

    async def start(self) -> None:
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        logger.info("Starting message producer")

        self._producer = AIOKafkaProducer(**self._build_kafka_config())
        await self._producer.start()
        self._started = True

        logger.info(
            "Message producer started successfully",
            extra={"bootstrap_servers": self.config.bootstrap_servers},
        )

    async def stop(self) -> None:
        # Errors during stop are logged but not re-raised to avoid masking original exceptions
        if self._producer is None:
            logger.debug("Producer already stopped")
            return

        logger.info("Stopping message producer")

        try:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop, skipping graceful producer shutdown")
                return
            if loop.is_closed():
                logger.warning("Event loop is closed, skipping graceful producer shutdown")
                return

            if self._started:
                await self._producer.flush()
            await self._producer.stop()
            logger.info("Message producer stopped successfully")
        except Exception as e:
            logger.error(
                "Error stopping message producer",
                extra={"error": str(e)},
                exc_info=True,
            )
        finally:
            self._producer = None
            self._started = False

    async def send(
        self,
        topic: str,
        key: str | None,
        value: bytes,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult:
        """Publish one message and wait for the broker acknowledgement.

        Raises:
            RuntimeError: If the producer was not started
            PublishError: If the broker rejected or could not receive the message
        """
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        headers_list = None
        if headers:
            headers_list = [(k, encode_text(v)) for k, v in headers.items()]

        key_bytes = encode_text(key) if key is not None else None

        logger.debug(
            "Sending message",
            extra={"target_topic": topic, "message_key": key, "value_size": len(value)},
        )

        try:
            metadata = await self._producer.send_and_wait(
                topic,
                key=key_bytes,
                value=value,
                headers=headers_list,
            )
        except Exception as e:
            record_message_produced(topic, success=False)
            logger.error(
                "Failed to send message",
                extra={"target_topic": topic, "message_key": key, "error": str(e)},
                exc_info=True,
            )
            raise PublishError(f"Failed to publish to {topic}", topic=topic, cause=e) from e

        record_message_produced(topic, success=True)
        logger.debug(
            "Message sent successfully",
            extra={
                "target_topic": metadata.topic,
                "partition": metadata.partition,
                "offset": metadata.offset,
            },
        )
        return ProduceResult(
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
        )

    async def flush(self) -> None:
        if not self._started or self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")
        logger.debug("Flushing producer")
        await self._producer.flush()

    @property
    def is_started(self) -> bool:
        return self._started and self._producer is not None


__all__ = [
    "MessageProducer",
]
