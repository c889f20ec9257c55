"""Escalation policy: re-queue to the retry topic or dead-letter."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 2000


class EscalationDecision(Enum):
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


def decide(current_retry_count: int, max_retries: int) -> EscalationDecision:
    """RETRY while the count is below the budget, DEAD_LETTER once it is reached."""
    if current_retry_count < max_retries:
        return EscalationDecision.RETRY
    return EscalationDecision.DEAD_LETTER


def backoff_delay(
    max_retries: int,
    current_retry_count: int,
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
) -> timedelta:
    """Delay applied after a retry publish.

    Flat: the same delay for every attempt. max_retries and
    current_retry_count are accepted so an attempt-aware schedule can be
    dropped in without changing call sites.
    """
    return timedelta(milliseconds=retry_delay_ms)


@dataclass(frozen=True)
class EscalationPolicy:
    """Retry budget and backoff read once at startup."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay_ms < 0:
            raise ValueError(f"retry_delay_ms must be >= 0, got {self.retry_delay_ms}")

    def decide(self, current_retry_count: int) -> EscalationDecision:
        return decide(current_retry_count, self.max_retries)

    def backoff_delay(self, current_retry_count: int) -> timedelta:
        return backoff_delay(self.max_retries, current_retry_count, self.retry_delay_ms)


__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAY_MS",
    "EscalationDecision",
    "EscalationPolicy",
    "backoff_delay",
    "decide",
]
