"""
Unified exception hierarchy for the order pipeline.

Provides typed exceptions with retry classification so the dispatch
path can tell decode, processing and publish failures apart.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class DecodeError(PermanentError):
    """Payload bytes could not be decoded into a domain record."""

    pass


class ProcessingError(TransientError):
    """The processing step rejected a decoded record."""

    pass


class PublishError(TransientError):
    """Publishing to the broker failed. Fatal for the current message."""

    def __init__(
        self,
        message: str,
        topic: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, {"topic": topic, **(context or {})})
        self.topic = topic


class ConfigurationError(PermanentError):
    """Configuration is missing or invalid."""

    pass


__all__ = [
    "ErrorCategory",
    "PipelineError",
    "TransientError",
    "PermanentError",
    "DecodeError",
    "ProcessingError",
    "PublishError",
    "ConfigurationError",
]
