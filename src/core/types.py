"""
Core types shared across modules.

This module provides base enums used by the error hierarchy and the
dispatch path so that error classification stays consistent.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Failures that may succeed on a later attempt
                   (e.g., processing hiccups, broker unavailable)
        PERMANENT: Failures that will not succeed on retry
                   (e.g., undecodable payloads, invalid configuration)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
