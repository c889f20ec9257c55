"""Broker adapters and shared message types."""

from order_pipeline.common.types import MessageEnvelope, ProduceResult

__all__ = ["MessageEnvelope", "ProduceResult"]
