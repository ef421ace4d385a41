"""
Workflow block: runs another registered workflow as a child execution.

The child gets its own execution id and runs in-process with a nested
RuntimeContext (recursion depth checked). Outcomes:

- success: the block output carries the child's output and trace spans
- failure: the block fails with the child's error
- paused: the child's pause record points back at this block through
  parentExecutionInfo, and ExecutionPaused suspends the parent here with
  resumeTriggerType "child". When the child later completes through a
  resume, the coordinator writes its output into this block and resumes
  the parent.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic import Field

from .block import BlockInput, BlockOutput
from .exceptions import ExecutionPaused
from .execution_context import utc_now
from .execution_log import build_trace_spans
from .execution_result import ExecutionResult
from .executor_base import BlockHandler, BlockRun
from .workflow_runner import WorkflowRunner

logger = logging.getLogger(__name__)


class WorkflowBlockInput(BlockInput):
    workflow_id: str = Field(description="Name of the registered workflow to run")
    input: dict[str, Any] = Field(
        default_factory=dict, description="Child workflow input (references resolved in parent)"
    )


class WorkflowBlockOutput(BlockOutput):
    success: bool
    child_workflow_name: str
    child_workflow_id: str
    child_execution_id: str | None = None
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    child_trace_spans: list[dict[str, Any]] = Field(default_factory=list)


def child_block_output(
    result: ExecutionResult, workflow_name: str, logs: list[dict[str, Any]] | None = None
) -> WorkflowBlockOutput:
    """Workflow block output for a finished child run (also used by cascading resume)."""
    spans, _ = build_trace_spans(logs if logs is not None else result.logs, result.duration_ms)
    return WorkflowBlockOutput(
        success=result.status == "success",
        child_workflow_name=workflow_name,
        child_workflow_id=result.context.workflow_id,
        child_execution_id=result.context.execution_id,
        result=result.output,
        error=result.error,
        child_trace_spans=spans,
    )


class WorkflowBlockHandler(BlockHandler):
    """Runs a child workflow inline."""

    type_name: ClassVar[str] = "workflow"
    input_type: ClassVar[type[BlockInput]] = WorkflowBlockInput
    output_type: ClassVar[type[BlockOutput]] = WorkflowBlockOutput

    async def execute(  # type: ignore[override]
        self, inputs: WorkflowBlockInput, run: BlockRun
    ) -> WorkflowBlockOutput:
        try:
            graph = run.runtime.workflow_registry.get(inputs.workflow_id)
        except KeyError as e:
            raise ValueError(f"Child workflow not found: {inputs.workflow_id}") from e

        child_runtime = run.runtime.create_child_context(graph.id)
        runner = WorkflowRunner(child_runtime)
        child_run = await runner.run(
            graph,
            inputs.input,
            is_deployed_context=run.context.is_deployed_context,
            parent_execution_info={
                "workflowId": run.context.workflow_id,
                "executionId": run.context.execution_id,
                "blockId": run.block.id,
            },
            cancellation=run.cancellation,
            trigger="workflow",
        )
        result = child_run.result

        if result.is_paused:
            logger.info(
                f"Child workflow '{graph.id}' ({child_run.execution_id}) paused, "
                f"suspending parent at {run.block.id}"
            )
            raise ExecutionPaused(
                run.block.id,
                {
                    "blockId": run.block.id,
                    "blockName": run.block.display_name,
                    "pausedAt": utc_now().isoformat(),
                    "resumeTriggerType": "child",
                    "triggerType": "child",
                    "childExecutionId": child_run.execution_id,
                    "childWorkflowId": graph.id,
                },
            )

        if result.status != "success":
            raise ValueError(f"Child workflow '{graph.id}' failed: {result.error}")

        return child_block_output(result, graph.name)


__all__ = ["WorkflowBlockHandler", "WorkflowBlockInput", "WorkflowBlockOutput", "child_block_output"]
