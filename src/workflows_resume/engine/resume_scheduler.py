"""Background resume of schedule-triggered pauses."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from .exceptions import ResumeError
from .resume_coordinator import ResumeCoordinator

logger = logging.getLogger(__name__)


class ResumeScheduler:
    """Periodic task that resumes schedule waits once their resumeAt has passed.

    Usage:
        scheduler = ResumeScheduler(coordinator, interval=5.0)
        await scheduler.start()
        ...
        await scheduler.stop()

    tick() can also be called directly (tests, one-shot sweeps).
    """

    def __init__(self, coordinator: ResumeCoordinator, interval: float = 5.0):
        """Initialize scheduler.

        Args:
            coordinator: Coordinator used to resume due executions
            interval: Seconds between ticks; 0 disables the background task
        """
        self._coordinator = coordinator
        self._interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background tick loop."""
        if self._running:
            logger.warning("ResumeScheduler already running")
            return
        if self._interval <= 0:
            logger.info("ResumeScheduler disabled (interval 0)")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"ResumeScheduler started (interval {self._interval}s)")

    async def stop(self) -> None:
        """Stop the tick loop, cancelling a tick in progress."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ResumeScheduler stopped")

    async def tick(self, now: datetime | None = None) -> list[dict[str, Any]]:
        """Resume every due schedule wait once.

        Returns:
            One entry per due execution: {executionId, success, error?}
        """
        due = await self._coordinator.pause_store.list_due(now)
        outcomes = []
        for paused in due:
            try:
                response = await self._coordinator.resume_schedule(paused.execution_id)
                outcomes.append(
                    {"executionId": paused.execution_id, "success": response.get("success", True)}
                )
            except ResumeError as e:
                # Another tick or trigger got there first, or the record changed
                logger.info(f"Scheduled resume of {paused.execution_id} skipped: {e.message}")
                outcomes.append(
                    {"executionId": paused.execution_id, "success": False, "error": e.message}
                )
        if due:
            logger.info(f"ResumeScheduler tick resumed {len(due)} due executions")
        return outcomes

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"ResumeScheduler tick failed: {e}", exc_info=True)
            await asyncio.sleep(self._interval)


__all__ = ["ResumeScheduler"]
