"""Edge selection and active-path reconstruction.

Everything that decides "which blocks may run next" goes through this
module: the graph executor when a block finishes, and every resume trigger
when it rebuilds the active path of a deserialized context. Keeping a
single implementation means branch decisions are honored identically in
both places.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .execution_context import Decisions, ExecutionContext
from .schema import Edge, WorkflowGraph

logger = logging.getLogger(__name__)

ERROR_HANDLE = "error"
CONDITION_HANDLE_PREFIX = "condition-"


def edge_is_taken(edge: Edge, decisions: Decisions) -> bool:
    """Whether an outgoing edge of an executed block was followed.

    - router: only the edge to the chosen target
    - condition: only the edge whose handle names the chosen branch
    - error handles: never on a successful block
    - any other block: every edge
    """
    if edge.source_handle == ERROR_HANDLE:
        return False

    router_choice = decisions.router.get(edge.source)
    if router_choice is not None:
        return edge.target == router_choice

    branch = decisions.condition.get(edge.source)
    if branch is not None:
        handle = edge.source_handle or ""
        return handle in (branch, f"{CONDITION_HANDLE_PREFIX}{branch}")

    return True


def taken_targets(graph: WorkflowGraph, block_id: str, decisions: Decisions) -> list[str]:
    """Targets activated when block_id completes."""
    return [edge.target for edge in graph.outgoing(block_id) if edge_is_taken(edge, decisions)]


def rebuild_active_path(
    graph: WorkflowGraph,
    executed_blocks: Iterable[str],
    decisions: Decisions,
    paused_block_id: str | None = None,
) -> set[str]:
    """Recompute the active path from what has run.

    The result holds every executed block, the paused block, and every
    taken edge target whose source is executed or is the paused block.
    The persisted active path is never trusted: it is derived again from
    the frozen graph topology.
    """
    sources = set(executed_blocks)
    if paused_block_id:
        sources.add(paused_block_id)

    active = set(sources)
    for edge in graph.edges:
        if edge.source in sources and edge_is_taken(edge, decisions):
            active.add(edge.target)
    return active


def executed_blocks_from_logs(context: ExecutionContext) -> set[str]:
    """Block ids that ran successfully according to the context's block logs."""
    return {log.block_id for log in context.block_logs if log.success}


def reconcile_executed_blocks(
    context: ExecutionContext, stored_logs: Iterable[dict] | None = None
) -> set[str]:
    """Fill executed_blocks from logs (context logs plus stored logs).

    Logs are the record of what ran; a stale executed set only ever gains
    entries here, never loses them. Blocks recovered this way without a
    block state get an empty executed state so the set and the state map
    stay consistent.
    """
    recovered = executed_blocks_from_logs(context)
    for log in stored_logs or []:
        if log.get("blockId") and log.get("success", True) is not False:
            recovered.add(log["blockId"])

    missing = recovered - context.executed_blocks
    for block_id in missing:
        state = context.block_states.get(block_id)
        if state is None:
            context.mark_executed(block_id, {})
        else:
            state.executed = True
            context.executed_blocks.add(block_id)

    if missing:
        logger.info(
            f"Recovered {len(missing)} executed blocks from logs for {context.execution_id}: "
            f"{sorted(missing)}"
        )
    return context.executed_blocks


def refresh_active_path(
    graph: WorkflowGraph, context: ExecutionContext, paused_block_id: str | None = None
) -> set[str]:
    """Replace context.active_execution_path with the recomputed path."""
    context.active_execution_path = rebuild_active_path(
        graph, context.executed_blocks, context.decisions, paused_block_id
    )
    return context.active_execution_path


__all__ = [
    "edge_is_taken",
    "executed_blocks_from_logs",
    "rebuild_active_path",
    "reconcile_executed_blocks",
    "refresh_active_path",
    "taken_targets",
]
