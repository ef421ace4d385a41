"""
Workflow runner: one fresh execution plus the persistence around it.

GraphExecutor only walks the graph. The runner adds what a run needs
before anyone else can observe it:

- paused runs get a pause record (fatal on failure: a run that cannot be
  resumed must not look paused)
- every run gets its logs recorded (best effort: a logging failure never
  changes the outcome the caller sees)

Resumed runs are persisted by the ResumeCoordinator instead, which needs
re-pause and log-merge semantics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .cancellation import CancellationToken
from .exceptions import PausePersistenceError
from .execution_result import ExecutionResult
from .graph_executor import GraphExecutor
from .pause_store import PauseReceipt, pause_params_from_context
from .runtime_context import RuntimeContext
from .schema import WorkflowGraph

logger = logging.getLogger(__name__)


@dataclass
class WorkflowRun:
    """Result of a run plus its pause receipt, if it paused."""

    result: ExecutionResult
    receipt: PauseReceipt | None = None

    @property
    def execution_id(self) -> str:
        return self.result.context.execution_id

    def to_response(self) -> dict[str, Any]:
        response = self.result.to_response()
        response["executionId"] = self.execution_id
        response["workflowId"] = self.result.context.workflow_id
        if self.receipt is not None:
            response["pause"] = self.receipt.to_dict()
        return response


class WorkflowRunner:
    """
    Executes workflows and records their outcome.

    Usage:
        runner = WorkflowRunner(runtime)
        run = await runner.run(graph, {"amount": 42})
        if run.result.is_paused:
            print(run.receipt.approve_url)
    """

    def __init__(self, runtime: RuntimeContext):
        self.runtime = runtime

    async def run(
        self,
        graph: WorkflowGraph,
        workflow_input: dict[str, Any] | None = None,
        *,
        execution_id: str | None = None,
        is_deployed_context: bool = False,
        parent_execution_info: dict[str, Any] | None = None,
        environment_variables: dict[str, str] | None = None,
        cancellation: CancellationToken | None = None,
        trigger: str = "manual",
        user_id: str | None = None,
    ) -> WorkflowRun:
        """
        Execute a workflow from its entry blocks.

        Args:
            parent_execution_info: {workflowId, executionId, blockId} when this run
                is the child of a workflow block; stored with any pause so the
                child's completion can cascade to the parent

        Raises:
            PausePersistenceError: If the run paused but could not be persisted
        """
        executor = GraphExecutor(
            graph,
            self.runtime,
            workflow_input=workflow_input,
            environment_variables=environment_variables,
            execution_id=execution_id,
            is_deployed_context=is_deployed_context,
            cancellation=cancellation,
        )
        executor.context.parent_execution_info = parent_execution_info
        if trigger != "manual":
            executor.context.metadata["triggerType"] = trigger

        result = await executor.execute()

        receipt = None
        if result.is_paused:
            receipt = await self.record_pause(result, executor.workflow_input, user_id)
            await self.record_logs(result, trigger=trigger, pending=True)
        elif not result.is_cancelled:
            await self.record_logs(result, trigger=trigger)

        return WorkflowRun(result, receipt)

    async def record_pause(
        self,
        result: ExecutionResult,
        workflow_input: dict[str, Any] | None = None,
        user_id: str | None = None,
        *,
        repause: bool = False,
    ) -> PauseReceipt:
        """Persist the pause record of a paused result.

        Raises:
            PausePersistenceError: If no pause store is configured or the write fails
        """
        pause_store = self.runtime.pause_store
        if pause_store is None:
            raise PausePersistenceError("No pause store configured, cannot pause execution")

        context = result.context
        params = pause_params_from_context(
            context, context.workflow or {}, workflow_input, user_id=user_id
        )
        if repause:
            receipt = await pause_store.repause(params)
        else:
            receipt = await pause_store.pause(params)
        logger.info(
            f"Execution {context.execution_id} paused at {params.block_id} "
            f"(trigger={params.metadata['resumeTriggerType']})"
        )
        return receipt

    async def record_logs(
        self,
        result: ExecutionResult,
        *,
        logs: list[dict[str, Any]] | None = None,
        trigger: str = "manual",
        pending: bool = False,
    ) -> None:
        """Persist execution logs. Errors are logged, never raised."""
        log_store = self.runtime.log_store
        if log_store is None:
            return

        context = result.context
        try:
            if pending:
                await log_store.persist(
                    context.execution_id,
                    context.workflow_id,
                    logs=logs if logs is not None else result.logs,
                    trigger=trigger,
                )
            else:
                await log_store.persist(
                    context.execution_id,
                    context.workflow_id,
                    logs=logs,
                    result=result,
                    trigger=trigger,
                )
        except Exception:
            logger.exception(f"Failed to persist execution logs for {context.execution_id}")


__all__ = ["WorkflowRun", "WorkflowRunner"]
