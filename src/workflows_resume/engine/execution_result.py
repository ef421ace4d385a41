"""
Execution result monad for graph traversal.

The context is ALWAYS present, whatever the outcome, so a failed or paused
run still carries every block state and log produced before it stopped.
Factory methods keep status and fields consistent; to_response() is the
single place the standard resume/execute response is formatted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from .execution_context import ExecutionContext, utc_now

ExecutionStatus = Literal["success", "failure", "paused", "cancelled"]


@dataclass
class ExecutionResult:
    """
    Outcome of GraphExecutor.execute() / resume_from_context().

    Example:
        result = await executor.resume_from_context(workflow_id, context)
        if result.is_paused:
            await pause_store.repause(...)
        return result.to_response(logs=new_logs)
    """

    status: ExecutionStatus
    context: ExecutionContext
    output: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    logs: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    ended_at: datetime = field(default_factory=utc_now)

    # Factory Methods

    @staticmethod
    def success(
        context: ExecutionContext,
        output: dict[str, Any],
        logs: list[dict[str, Any]],
        started_at: datetime,
    ) -> ExecutionResult:
        return ExecutionResult("success", context, output, None, logs, started_at, utc_now())

    @staticmethod
    def failure(
        error: str,
        context: ExecutionContext,
        logs: list[dict[str, Any]],
        started_at: datetime,
        output: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """Failed run; partial block states stay on the context for debugging."""
        return ExecutionResult(
            "failure", context, output or {}, error, logs, started_at, utc_now()
        )

    @staticmethod
    def paused(
        context: ExecutionContext,
        output: dict[str, Any],
        logs: list[dict[str, Any]],
        started_at: datetime,
    ) -> ExecutionResult:
        """Run halted at a wait block; context.metadata carries waitBlockInfo."""
        return ExecutionResult("paused", context, output, None, logs, started_at, utc_now())

    @staticmethod
    def cancelled(
        context: ExecutionContext,
        logs: list[dict[str, Any]],
        started_at: datetime,
        reason: str | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            "cancelled", context, {}, reason or "Execution cancelled", logs, started_at, utc_now()
        )

    # Status helpers

    @property
    def is_success(self) -> bool:
        """True for finished or paused runs (a pause is not a failure)."""
        return self.status in ("success", "paused")

    @property
    def is_paused(self) -> bool:
        return self.status == "paused"

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_completed(self) -> bool:
        """Finished for good: succeeded or failed, neither paused nor cancelled."""
        return self.status in ("success", "failure")

    @property
    def duration_ms(self) -> float:
        return (self.ended_at - self.started_at).total_seconds() * 1000

    @property
    def wait_block_info(self) -> dict[str, Any] | None:
        return self.context.wait_block_info if self.is_paused else None

    @property
    def metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "duration": self.duration_ms,
            "executedBlockCount": len(self.context.executed_blocks),
            "startTime": self.started_at.isoformat(),
            "endTime": self.ended_at.isoformat(),
            "isPaused": self.is_paused,
        }
        if self.wait_block_info:
            metadata["waitBlockInfo"] = self.wait_block_info
        return metadata

    # Formatting

    def to_response(self, logs: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        """
        Standard execute/resume response.

        Args:
            logs: Logs to report (resume passes only the blocks that ran after
                the resume; defaults to every log of this result)
        """
        return {
            "success": self.is_success,
            "output": self.output,
            "error": self.error,
            "isPaused": self.is_paused,
            "isCancelled": self.is_cancelled,
            "logs": self.logs if logs is None else logs,
            "metadata": self.metadata,
        }


__all__ = ["ExecutionResult", "ExecutionStatus"]
