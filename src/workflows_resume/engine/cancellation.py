"""Cooperative cancellation for long-running block handlers."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Flag passed explicitly alongside an ExecutionContext.

    Nothing is preempted: handlers that run for a while (time-based waits,
    registry waits) poll is_cancelled or await wait() themselves. A handler
    that never polls runs to completion regardless of cancel().
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


__all__ = ["CancellationToken"]
