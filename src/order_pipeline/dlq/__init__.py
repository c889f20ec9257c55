"""Dead-letter routing support."""

from order_pipeline.dlq.metadata import DLQMetadata

__all__ = ["DLQMetadata"]
