"""Periodic statistics logging utility for workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

_TRACKED = ("succeeded", "dead_lettered", "sink_failures", "commit_failures")


class PeriodicStatsLogger:
    """
    Manages periodic statistics logging for workers with delta tracking.

    Workers provide a callback returning cumulative counts; the logger emits
    one line per interval with the deltas since the previous cycle.
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[int], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        """
        Args:
            interval_seconds: Logging interval in seconds
            get_stats: Callback that takes cycle_count and returns cumulative
                counts keyed by records_succeeded, records_dead_lettered,
                sink_failures, commit_failures (plus any extra fields)
            stage: Stage name for logging context
            worker_id: Worker identifier
        """
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous_stats: dict[str, int] = {}

    def start(self) -> None:
        """Start the periodic logging task."""
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic logging task."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @staticmethod
    def _current(extra: dict[str, Any]) -> dict[str, int]:
        return {
            "succeeded": extra.get("records_succeeded", 0),
            "dead_lettered": extra.get("records_dead_lettered", 0),
            "sink_failures": extra.get("sink_failures", 0),
            "commit_failures": extra.get("commit_failures", 0),
        }

    def log_cycle(self) -> None:
        """Emit one statistics line and advance the cycle counter."""
        extra = self.get_stats(self._cycle_count)
        current = self._current(extra)

        if self._cycle_count == 0:
            msg = format_cycle_output(0, **current)
            msg = f"{msg} [cycle output every {self.interval_seconds}s]"
            deltas = {key: 0 for key in _TRACKED}
        else:
            deltas = {
                key: current[key] - self._previous_stats.get(key, 0) for key in _TRACKED
            }
            msg = format_cycle_output(
                self._cycle_count,
                **current,
                since_last=deltas,
                interval_seconds=self.interval_seconds,
            )

        delta_total = deltas["succeeded"] + deltas["dead_lettered"]
        rate = delta_total / self.interval_seconds if self.interval_seconds > 0 else 0

        logger.info(
            msg,
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": self._cycle_count,
                "delta_succeeded": deltas["succeeded"],
                "delta_dead_lettered": deltas["dead_lettered"],
                "rate_msg_per_sec": round(rate, 1),
                **extra,
            },
        )

        self._previous_stats = current
        self._cycle_count += 1

    async def _run(self) -> None:
        """Run the periodic logging loop."""
        try:
            self.log_cycle()
            while True:
                await asyncio.sleep(self.interval_seconds)
                self.log_cycle()
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
