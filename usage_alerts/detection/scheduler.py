"""
Periodic triggers for detection cycles and batch flushes.

The scheduler runs two independent loops: one that starts a detection
cycle every detection interval, and one that checks for elapsed batch
windows every flush interval. Tests drive it through run_once().
"""

import asyncio
from datetime import datetime
from typing import List, Optional, Tuple

import structlog

from usage_alerts.detection.engine import DetectionEngine
from usage_alerts.models.alerts import Alert, AlertSummary

logger = structlog.get_logger(__name__)


class CycleScheduler:
    """
    Drives a DetectionEngine on fixed intervals.

    Attributes:
        engine: The engine to drive.
        detection_interval_seconds: Seconds between detection cycles.
        flush_interval_seconds: Seconds between batch flush checks.
    """

    def __init__(
        self,
        engine: DetectionEngine,
        detection_interval_seconds: float = 900,
        flush_interval_seconds: float = 30,
    ) -> None:
        self.engine = engine
        self.detection_interval_seconds = detection_interval_seconds
        self.flush_interval_seconds = flush_interval_seconds

    async def run_once(
        self,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Alert], List[AlertSummary]]:
        """
        Run exactly one detection cycle and one flush check.

        Args:
            now: Evaluation time (defaults to now).

        Returns:
            Tuple of the alerts created and the summaries flushed.
        """
        alerts = await self.engine.run_detection_cycle(as_of=now)
        summaries = await self.engine.flush_due_batches(now)
        return alerts, summaries

    async def _wait(self, shutdown_event: asyncio.Event, seconds: float) -> bool:
        """Sleep for an interval. Returns True if shutdown was requested."""
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _detection_loop(self, shutdown_event: asyncio.Event) -> None:
        while not shutdown_event.is_set():
            try:
                await self.engine.run_detection_cycle()
            except Exception as e:
                logger.error("detection_cycle_error", error=str(e))

            if await self._wait(shutdown_event, self.detection_interval_seconds):
                break

    async def _flush_loop(self, shutdown_event: asyncio.Event) -> None:
        while not shutdown_event.is_set():
            if await self._wait(shutdown_event, self.flush_interval_seconds):
                break

            try:
                await self.engine.flush_due_batches()
            except Exception as e:
                logger.error("batch_flush_error", error=str(e))

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        Run both loops until the shutdown event is set.

        Args:
            shutdown_event: Set to stop the loops.
        """
        logger.info(
            "scheduler_started",
            detection_interval_seconds=self.detection_interval_seconds,
            flush_interval_seconds=self.flush_interval_seconds,
        )

        await asyncio.gather(
            self._detection_loop(shutdown_event),
            self._flush_loop(shutdown_event),
        )

        logger.info("scheduler_stopped")
