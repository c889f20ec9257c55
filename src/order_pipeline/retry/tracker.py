"""Retry counter carried in message headers.

The count lives entirely in the ``retryCount`` header. Missing, malformed
or negative values are read as "never retried" rather than raising, so a
message with damaged metadata still gets its full retry budget.
"""

from collections.abc import Mapping
from typing import Any

RETRY_COUNT_HEADER = "retryCount"


def extract_retry_count(headers: Mapping[str, Any] | None) -> int:
    """Return the non-negative retry count from headers, or 0 when absent or unparseable."""
    if not headers:
        return 0

    raw = headers.get(RETRY_COUNT_HEADER)
    if raw is None:
        return 0
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")

    try:
        count = int(str(raw).strip())
    except ValueError:
        return 0

    return count if count >= 0 else 0


def increment_retry_count(headers: Mapping[str, Any] | None) -> int:
    """Return the retry count the next retry-topic envelope should carry. Does not mutate headers."""
    return extract_retry_count(headers) + 1


__all__ = [
    "RETRY_COUNT_HEADER",
    "extract_retry_count",
    "increment_retry_count",
]
