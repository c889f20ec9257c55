"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
"""

from core.errors.exceptions import (
    ConfigurationError,
    DecodeError,
    ErrorCategory,
    PermanentError,
    PipelineError,
    ProcessingError,
    PublishError,
    TransientError,
)

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
