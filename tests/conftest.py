"""
pytest configuration for the order pipeline tests.

Adds src directory to Python path for imports and provides in-memory
collaborators for dispatch tests.
"""

import sys
from collections.abc import Iterable
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.errors.exceptions import PublishError  # noqa: E402
from order_pipeline.common.types import MessageEnvelope, ProduceResult  # noqa: E402


class ScriptedFailureSource:
    """Replays a fixed list of outcomes, then succeeds forever."""

    def __init__(self, outcomes: Iterable[bool] = ()):
        self._outcomes = list(outcomes)
        self.calls = 0

    def should_fail(self) -> bool:
        self.calls += 1
        if self._outcomes:
            return self._outcomes.pop(0)
        return False


class AlwaysFail:
    def should_fail(self) -> bool:
        return True


class RecordingPublisher:
    """Publisher that stores every send as an envelope instead of talking to a broker."""

    def __init__(self, fail_with: Exception | None = None):
        self.sent: list[MessageEnvelope] = []
        self.fail_with = fail_with

    async def send(self, topic, key, value, headers=None) -> ProduceResult:
        if self.fail_with is not None:
            raise PublishError(f"Failed to publish to {topic}", topic=topic, cause=self.fail_with)
        self.sent.append(
            MessageEnvelope(topic=topic, key=key, payload=value, headers=dict(headers or {}))
        )
        return ProduceResult(topic=topic, partition=0, offset=len(self.sent) - 1)

    def on_topic(self, topic: str) -> list[MessageEnvelope]:
        return [e for e in self.sent if e.topic == topic]


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def scripted_failures():
    """Factory for ScriptedFailureSource instances."""
    return ScriptedFailureSource


@pytest.fixture
def always_fail():
    return AlwaysFail()


@pytest.fixture
def failing_publisher():
    return RecordingPublisher(fail_with=ConnectionError("broker unavailable"))
