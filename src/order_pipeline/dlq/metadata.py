"""Typed metadata attached to dead-lettered envelopes."""

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from order_pipeline.retry.retry_utils import DLQ_METADATA_HEADER


class DLQMetadata(BaseModel):
    """Why and when an envelope was dead-lettered.

    Serialized as compact JSON into the ``dlqMetadata`` header using the
    camelCase wire names.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    retry_count: int = Field(alias="retryCount", ge=0)
    original_topic: str = Field(alias="originalTopic")
    error: str
    timestamp: int = Field(description="Epoch millis when the envelope was dead-lettered")

    def to_header(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_header(cls, value: str | bytes) -> "DLQMetadata":
        return cls.model_validate_json(value)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str] | None) -> "DLQMetadata | None":
        """Parse the metadata header, or None when absent or unreadable."""
        if not headers or DLQ_METADATA_HEADER not in headers:
            return None
        try:
            return cls.from_header(headers[DLQ_METADATA_HEADER])
        except ValidationError:
            return None


__all__ = ["DLQMetadata"]
