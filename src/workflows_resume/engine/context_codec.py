"""
Conversion between ExecutionContext and its storage-safe form.

The storage form is plain JSON: associative containers become ordered-pair
lists, sets become arrays, nested records use camelCase keys. It is what the
pause store persists and what crosses the network.

deserialize_context() accepts two shapes for every associative container:

- the canonical pair-list form produced by serialize_context()
- a plain-object form ({"blockA": {...}}), produced when a context already
  lost its map/set typing on an earlier serialization boundary

Both yield the same ExecutionContext. Missing optional collections become
empty ones. Round-trip law:
    serialize_context(deserialize_context(x)) == x
up to set and key ordering.

No other module should know about the pair-list form.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from .execution_context import (
    BlockLog,
    BlockState,
    Decisions,
    ExecutionContext,
    LoopExecutionState,
    ParallelBlockMapping,
    ParallelExecutionState,
)

if TYPE_CHECKING:
    from .schema import WorkflowGraph

logger = logging.getLogger(__name__)


# =============================================================================
# Serialization
# =============================================================================


def serialize_context(ctx: ExecutionContext) -> dict[str, Any]:
    """Convert an ExecutionContext to its storage-safe JSON form."""
    return {
        "workflowId": ctx.workflow_id,
        "workspaceId": ctx.workspace_id,
        "executionId": ctx.execution_id,
        "isDeployedContext": ctx.is_deployed_context,
        "blockStates": [
            {
                "blockId": block_id,
                "output": state.output,
                "executed": state.executed,
                "executionTime": state.execution_time,
            }
            for block_id, state in ctx.block_states.items()
        ],
        "blockLogs": [log.to_dict() for log in ctx.block_logs],
        "metadata": ctx.metadata,
        "environmentVariables": ctx.environment_variables,
        "workflowVariables": ctx.workflow_variables,
        "decisions": {
            "router": [[k, v] for k, v in ctx.decisions.router.items()],
            "condition": [[k, v] for k, v in ctx.decisions.condition.items()],
        },
        "loopIterations": [[k, v] for k, v in ctx.loop_iterations.items()],
        "loopItems": [[k, v] for k, v in ctx.loop_items.items()],
        "completedLoops": _sorted(ctx.completed_loops),
        "parallelExecutions": [
            {
                "id": parallel_id,
                "parallelCount": state.parallel_count,
                "distributionItems": state.distribution_items,
                "completedExecutions": state.completed_executions,
                "executionResults": [[k, v] for k, v in state.execution_results.items()],
                "activeIterations": _sorted(state.active_iterations),
                "currentIteration": state.current_iteration,
                "parallelType": state.parallel_type,
            }
            for parallel_id, state in ctx.parallel_executions.items()
        ],
        "loopExecutions": [
            {
                "id": loop_id,
                "maxIterations": state.max_iterations,
                "loopType": state.loop_type,
                "forEachItems": state.for_each_items,
                "executionResults": [[k, v] for k, v in state.execution_results.items()],
                "currentIteration": state.current_iteration,
            }
            for loop_id, state in ctx.loop_executions.items()
        ],
        "parallelBlockMapping": [
            [
                virtual_id,
                {
                    "originalBlockId": mapping.original_block_id,
                    "parallelId": mapping.parallel_id,
                    "iterationIndex": mapping.iteration_index,
                },
            ]
            for virtual_id, mapping in ctx.parallel_block_mapping.items()
        ],
        "currentVirtualBlockId": ctx.current_virtual_block_id,
        "executedBlocks": _sorted(ctx.executed_blocks),
        "activeExecutionPath": _sorted(ctx.active_execution_path),
        "workflow": ctx.workflow,
        "stream": ctx.stream,
        "selectedOutputs": list(ctx.selected_outputs),
        "edges": ctx.edges,
        "shouldPauseAfterBlock": ctx.should_pause_after_block,
        "parentExecutionInfo": ctx.parent_execution_info,
    }


def serialize_workflow_state(graph: WorkflowGraph) -> dict[str, Any]:
    """Frozen graph snapshot stored with a pause record.

    Edges without an id get "{source}-{target}-{index}" so previews and
    later diffs can address them.
    """
    state = graph.model_dump(mode="json")
    state["edges"] = [
        {**edge, "id": edge.get("id") or f"{edge['source']}-{edge['target']}-{index}"}
        for index, edge in enumerate(state.get("edges", []))
    ]
    return state


# =============================================================================
# Deserialization
# =============================================================================


def deserialize_context(data: Mapping[str, Any]) -> ExecutionContext:
    """Rebuild an ExecutionContext from the pair-list or plain-object form.

    Raises:
        ValueError: If a required identity field is missing or a pair list is malformed
    """
    execution_id = data.get("executionId")
    workflow_id = data.get("workflowId")
    if not execution_id or not workflow_id:
        raise ValueError("Serialized context must contain executionId and workflowId")

    decisions_data = data.get("decisions") or {}

    ctx = ExecutionContext(
        execution_id=execution_id,
        workflow_id=workflow_id,
        workspace_id=data.get("workspaceId"),
        is_deployed_context=bool(data.get("isDeployedContext", False)),
        block_states=_block_states(data.get("blockStates")),
        decisions=Decisions(
            router={str(k): v for k, v in _pairs(decisions_data.get("router"))},
            condition={str(k): v for k, v in _pairs(decisions_data.get("condition"))},
        ),
        loop_iterations={str(k): int(v) for k, v in _pairs(data.get("loopIterations"))},
        loop_items={str(k): v for k, v in _pairs(data.get("loopItems"))},
        completed_loops=set(_members(data.get("completedLoops"))),
        parallel_executions={
            parallel_id: _parallel_state(record)
            for parallel_id, record in _records(data.get("parallelExecutions"))
        },
        loop_executions={
            loop_id: _loop_state(record) for loop_id, record in _records(data.get("loopExecutions"))
        },
        parallel_block_mapping={
            str(virtual_id): ParallelBlockMapping(
                original_block_id=mapping["originalBlockId"],
                parallel_id=mapping["parallelId"],
                iteration_index=int(mapping["iterationIndex"]),
            )
            for virtual_id, mapping in _pairs(data.get("parallelBlockMapping"))
        },
        current_virtual_block_id=data.get("currentVirtualBlockId"),
        block_logs=[BlockLog.model_validate(entry) for entry in data.get("blockLogs") or []],
        metadata=dict(data.get("metadata") or {}),
        environment_variables=dict(data.get("environmentVariables") or {}),
        workflow_variables=dict(data.get("workflowVariables") or {}),
        workflow=data.get("workflow"),
        stream=bool(data.get("stream", False)),
        selected_outputs=list(data.get("selectedOutputs") or []),
        edges=data.get("edges"),
        should_pause_after_block=bool(data.get("shouldPauseAfterBlock", False)),
        parent_execution_info=data.get("parentExecutionInfo"),
    )
    ctx.executed_blocks = set(_members(data.get("executedBlocks")))
    ctx.active_execution_path = set(_members(data.get("activeExecutionPath")))

    logger.debug(
        f"Deserialized context {ctx.execution_id}: {len(ctx.block_states)} block states, "
        f"{len(ctx.executed_blocks)} executed, {len(ctx.active_execution_path)} active"
    )
    return ctx


def normalize_serialized_context(data: Mapping[str, Any]) -> dict[str, Any]:
    """Bring a context in either accepted shape to the canonical pair-list form."""
    return serialize_context(deserialize_context(data))


def _block_states(value: Any) -> dict[str, BlockState]:
    states: dict[str, BlockState] = {}
    if isinstance(value, Mapping):
        items: Iterable[tuple[Any, Any]] = value.items()
    elif isinstance(value, list):
        items = (
            (item["blockId"], item) if isinstance(item, Mapping) else _pair(item) for item in value
        )
    else:
        return states

    for block_id, state in items:
        state = state or {}
        states[str(block_id)] = BlockState(
            output=state.get("output") or {},
            executed=bool(state.get("executed", False)),
            execution_time=float(state.get("executionTime") or 0),
        )
    return states


def _parallel_state(record: Mapping[str, Any]) -> ParallelExecutionState:
    return ParallelExecutionState(
        parallel_count=int(record.get("parallelCount") or 0),
        distribution_items=record.get("distributionItems"),
        completed_executions=int(record.get("completedExecutions") or 0),
        execution_results={str(k): v for k, v in _pairs(record.get("executionResults"))},
        active_iterations={int(i) for i in _members(record.get("activeIterations"))},
        current_iteration=int(record.get("currentIteration") or 0),
        parallel_type=record.get("parallelType"),
    )


def _loop_state(record: Mapping[str, Any]) -> LoopExecutionState:
    return LoopExecutionState(
        max_iterations=int(record.get("maxIterations") or 0),
        loop_type=record.get("loopType"),
        for_each_items=record.get("forEachItems"),
        execution_results={str(k): v for k, v in _pairs(record.get("executionResults"))},
        current_iteration=int(record.get("currentIteration") or 0),
    )


def _records(value: Any) -> list[tuple[str, Mapping[str, Any]]]:
    """Subflow records: [{"id": ..., ...}], [[id, {...}]] or {id: {...}}."""
    if isinstance(value, Mapping):
        return [(str(k), v) for k, v in value.items()]
    if not isinstance(value, list):
        return []
    records = []
    for item in value:
        if isinstance(item, Mapping):
            records.append((str(item["id"]), item))
        else:
            key, record = _pair(item)
            records.append((str(key), record))
    return records


def _pairs(value: Any) -> list[tuple[Any, Any]]:
    if value is None:
        return []
    if isinstance(value, Mapping):
        return list(value.items())
    if isinstance(value, list):
        return [_pair(item) for item in value]
    raise ValueError(f"Expected pair list or object, got {type(value).__name__}")


def _pair(item: Any) -> tuple[Any, Any]:
    if isinstance(item, list | tuple) and len(item) == 2:
        return item[0], item[1]
    raise ValueError(f"Malformed pair in serialized context: {item!r}")


def _members(value: Any) -> list[Any]:
    # A set that crossed JSON.stringify without conversion arrives as {}
    if isinstance(value, list | tuple | set):
        return list(value)
    return []


def _sorted(values: Iterable[Any]) -> list[Any]:
    return sorted(values)


__all__ = [
    "deserialize_context",
    "normalize_serialized_context",
    "serialize_context",
    "serialize_workflow_state",
]
