"""
Graph executor: walks a workflow graph over an ExecutionContext.

Traversal rules:
- A block is ready when it is on the active path, has not executed, and
  every incoming edge from an active source comes from an executed block.
- Ready blocks run one at a time, in graph order.
- When a block completes, the targets of its taken edges join the active
  path (router and condition decisions filter the edges, see reachability).
- Traversal stops when nothing is ready, when a handler asks to pause
  (context.should_pause_after_block or ExecutionPaused), or when the
  cancellation token is set.

The executor is re-entrant: create_from_paused_state() binds it to a
deserialized context and resume_from_context() continues from the active
path without re-running anything in executed_blocks.

Block failures never escape as exceptions; they are captured into a
failed ExecutionResult that still carries the context and every log.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from .cancellation import CancellationToken
from .context_codec import serialize_workflow_state
from .exceptions import ExecutionPaused
from .execution_context import BlockLog, BlockState, ExecutionContext, utc_now
from .execution_result import ExecutionResult
from .executor_base import BlockRun
from .reachability import taken_targets
from .references import ReferenceResolver
from .runtime_context import RuntimeContext
from .schema import BlockSpec, WorkflowGraph

logger = logging.getLogger(__name__)


class GraphExecutor:
    """
    Executes one workflow graph against one ExecutionContext.

    Usage:
        executor = GraphExecutor(graph, runtime, workflow_input={"amount": 42})
        result = await executor.execute()

        # later, in another request
        executor, context = GraphExecutor.create_from_paused_state(
            paused.workflow_state, context, runtime, workflow_input=paused.workflow_input
        )
        result = await executor.resume_from_context(paused.workflow_id, context)
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        runtime: RuntimeContext,
        *,
        workflow_input: dict[str, Any] | None = None,
        environment_variables: dict[str, str] | None = None,
        workflow_variables: dict[str, Any] | None = None,
        context: ExecutionContext | None = None,
        execution_id: str | None = None,
        is_deployed_context: bool = False,
        cancellation: CancellationToken | None = None,
    ):
        self.graph = graph
        self.runtime = runtime
        self.workflow_input = dict(workflow_input or {})
        self.cancellation = cancellation or CancellationToken()
        self.context = context or ExecutionContext(
            execution_id=execution_id or str(uuid.uuid4()),
            workflow_id=graph.id,
            is_deployed_context=is_deployed_context,
            environment_variables=dict(environment_variables or {}),
            workflow_variables=dict(workflow_variables or {}),
        )
        if self.context.workflow is None:
            self.context.workflow = serialize_workflow_state(graph)
        self._block_names = {block.display_name: block.id for block in graph.blocks}

    @classmethod
    def create_from_paused_state(
        cls,
        workflow_state: dict[str, Any],
        context: ExecutionContext,
        runtime: RuntimeContext,
        *,
        environment_variables: dict[str, str] | None = None,
        workflow_input: dict[str, Any] | None = None,
        extra_config: dict[str, Any] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> tuple[GraphExecutor, ExecutionContext]:
        """
        Rehydrate an executor bound to a previously serialized context.

        The frozen workflow_state is used as-is: edits made to the workflow
        definition after the pause do not affect the resumed run.

        Args:
            extra_config: Optional overrides (stream, selectedOutputs, workflowVariables)
        """
        graph = WorkflowGraph.model_validate(workflow_state)
        if environment_variables:
            context.environment_variables.update(environment_variables)

        extra_config = extra_config or {}
        if "stream" in extra_config:
            context.stream = bool(extra_config["stream"])
        if "selectedOutputs" in extra_config:
            context.selected_outputs = list(extra_config["selectedOutputs"])
        if "workflowVariables" in extra_config:
            context.workflow_variables.update(extra_config["workflowVariables"])

        context.workflow = workflow_state
        executor = cls(
            graph,
            runtime,
            workflow_input=workflow_input,
            context=context,
            cancellation=cancellation,
        )
        return executor, context

    async def execute(self) -> ExecutionResult:
        """Run the graph from its entry blocks."""
        if not self.context.active_execution_path:
            self.context.active_execution_path.update(b.id for b in self.graph.entry_blocks())
        logger.info(
            f"Executing workflow '{self.graph.id}' (execution {self.context.execution_id})"
        )
        return await self._run()

    async def resume_from_context(
        self, workflow_id: str, context: ExecutionContext
    ) -> ExecutionResult:
        """
        Continue traversal of a deserialized context from its active path.

        The pending pause flag is cleared first, otherwise the run would stop
        again right after the wait block it is resuming from.
        """
        if context is not self.context:
            raise ValueError("resume_from_context() needs the context bound to this executor")
        if workflow_id != context.workflow_id:
            raise ValueError(
                f"Workflow mismatch: context belongs to {context.workflow_id}, got {workflow_id}"
            )

        context.should_pause_after_block = False
        context.metadata.pop("isPaused", None)
        context.metadata.pop("waitBlockInfo", None)
        logger.info(
            f"Resuming workflow '{workflow_id}' (execution {context.execution_id}), "
            f"{len(context.executed_blocks)} blocks already executed"
        )
        return await self._run()

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    async def _run(self) -> ExecutionResult:
        context = self.context
        started_at = utc_now()

        while True:
            ready = self._ready_blocks()
            if not ready:
                break

            for block in ready:
                if self.cancellation.is_cancelled:
                    logger.info(f"Execution {context.execution_id} cancelled")
                    return ExecutionResult.cancelled(
                        context, self._logs(), started_at, self.cancellation.reason
                    )

                try:
                    output = await self._execute_block(block)
                except ExecutionPaused as e:
                    context.metadata["waitBlockInfo"] = e.wait_block_info
                    context.metadata["isPaused"] = True
                    context.should_pause_after_block = True
                    logger.info(f"Execution {context.execution_id} paused at {block.id}")
                    return ExecutionResult.paused(context, {}, self._logs(), started_at)
                except Exception as e:
                    logger.exception(f"Block '{block.id}' failed in {context.execution_id}")
                    return ExecutionResult.failure(
                        f"Block '{block.display_name}' failed: {e}",
                        context,
                        self._logs(),
                        started_at,
                    )

                if context.should_pause_after_block:
                    context.metadata["isPaused"] = True
                    logger.info(f"Execution {context.execution_id} paused after {block.id}")
                    return ExecutionResult.paused(context, output, self._logs(), started_at)

        logger.info(
            f"Execution {context.execution_id} completed: "
            f"{len(context.executed_blocks)} blocks executed"
        )
        return ExecutionResult.success(context, self._final_output(), self._logs(), started_at)

    def _ready_blocks(self) -> list[BlockSpec]:
        context = self.context
        ready = []
        for block in self.graph.blocks:
            if block.id not in context.active_execution_path:
                continue
            if block.id in context.executed_blocks:
                continue
            waiting_on = [
                edge.source
                for edge in self.graph.incoming(block.id)
                if edge.source in context.active_execution_path
                and edge.source not in context.executed_blocks
            ]
            if not waiting_on:
                ready.append(block)
        return ready

    async def _execute_block(self, block: BlockSpec) -> dict[str, Any]:
        """
        Run one block and record its state and log.

        Returns the block output. When the handler asked to pause, the
        output is stored unexecuted (no log, no successors); the resume
        trigger completes the block later.

        Raises:
            ExecutionPaused: If the block suspended the run
            Exception: On handler or param validation failure (logged first)
        """
        context = self.context
        handler = self.runtime.handler_registry.get(block.type)
        resolver = ReferenceResolver(context, self.workflow_input, self._block_names)

        raw_params = getattr(handler, "raw_params", frozenset())
        params = {
            key: value if key in raw_params else resolver.resolve(value)
            for key, value in block.params.items()
        }

        run = BlockRun(
            block=block,
            context=context,
            graph=self.graph,
            runtime=self.runtime,
            resolver=resolver,
            workflow_input=self.workflow_input,
            cancellation=self.cancellation,
        )

        started = utc_now()
        try:
            inputs = handler.validate_params(params)
            result = await handler.execute(inputs, run)
        except ExecutionPaused:
            raise
        except Exception as e:
            self._append_log(block, started, params, {}, error=str(e))
            raise

        output = result.to_output()
        elapsed_ms = (utc_now() - started).total_seconds() * 1000

        if context.should_pause_after_block:
            context.block_states[block.id] = BlockState(
                output=output, executed=False, execution_time=elapsed_ms
            )
            return output

        context.mark_executed(block.id, output, elapsed_ms)
        context.active_execution_path.update(
            taken_targets(self.graph, block.id, context.decisions)
        )
        self._append_log(block, started, params, output)
        logger.debug(f"Block '{block.id}' completed in {elapsed_ms:.1f}ms")
        return output

    def _append_log(
        self,
        block: BlockSpec,
        started: datetime,
        params: dict[str, Any],
        output: dict[str, Any],
        error: str | None = None,
    ) -> None:
        ended = utc_now()
        self.context.block_logs.append(
            BlockLog(
                id=str(uuid.uuid4()),
                block_id=block.id,
                block_name=block.display_name,
                block_type=block.type,
                started_at=started.isoformat(),
                ended_at=ended.isoformat(),
                duration_ms=(ended - started).total_seconds() * 1000,
                success=error is None,
                input=params,
                output=output,
                error=error,
            )
        )

    def _logs(self) -> list[dict[str, Any]]:
        return [log.to_dict() for log in self.context.block_logs]

    def _final_output(self) -> dict[str, Any]:
        """Output of the block that finished last."""
        for log in reversed(self.context.block_logs):
            if log.success:
                return self.context.block_output(log.block_id) or {}
        return {}


__all__ = ["GraphExecutor"]
