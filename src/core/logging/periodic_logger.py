"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

_COUNTER_FIELDS = {
    "succeeded": "records_succeeded",
    "retried": "records_retried",
    "dead_lettered": "records_dead_lettered",
}


class PeriodicStatsLogger:
    """
    Logs worker statistics on a fixed interval with delta tracking.

    The worker supplies a callback returning a dict of structured fields with
    cumulative counts (records_succeeded, records_retried, records_dead_lettered)
    and optionally running_average.
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] = {}

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @staticmethod
    def _counts(stats: dict[str, Any]) -> dict[str, int]:
        return {short: int(stats.get(field, 0)) for short, field in _COUNTER_FIELDS.items()}

    def log_cycle(self) -> None:
        """Emit one statistics line and advance the cycle counter."""
        stats = self.get_stats()
        current = self._counts(stats)

        since_last = None
        if self._cycle_count > 0:
            since_last = {key: current[key] - self._previous.get(key, 0) for key in current}

        msg = format_cycle_output(
            cycle_count=self._cycle_count,
            succeeded=current["succeeded"],
            retried=current["retried"],
            dead_lettered=current["dead_lettered"],
            since_last=since_last,
            interval_seconds=self.interval_seconds,
            running_average=stats.get("running_average"),
        )
        if self._cycle_count == 0:
            msg = f"{msg} [cycle output every {self.interval_seconds}s]"

        logger.info(
            msg,
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": self._cycle_count,
                **stats,
            },
        )

        self._previous = current
        self._cycle_count += 1

    async def _run(self) -> None:
        try:
            while True:
                self.log_cycle()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
