"""
In-memory state of one in-progress graph execution.

ExecutionContext is the working representation: native sets and dicts,
owned by exactly one in-flight execution or resume attempt at a time.
It is handed between attempts only through the context codec
(see context_codec.py), which is the single place that knows about the
storage-safe pair-list form.

Invariant: a block id is in executed_blocks iff block_states holds an entry
for it with executed=True. Use mark_executed() to keep both in step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Timezone-aware current time used for every engine timestamp."""
    return datetime.now(UTC)


@dataclass
class BlockState:
    """Output and bookkeeping for one block that has run (or is waiting)."""

    output: dict[str, Any] = field(default_factory=dict)
    executed: bool = False
    execution_time: float = 0.0  # milliseconds


@dataclass
class Decisions:
    """Branch history: which target a router picked, which branch a condition took."""

    router: dict[str, str] = field(default_factory=dict)
    condition: dict[str, str] = field(default_factory=dict)


@dataclass
class ParallelExecutionState:
    """Bookkeeping for one parallel subflow.

    execution_results is keyed by branch ("iteration_0", ...) so per-branch
    result identity survives serialization.
    """

    parallel_count: int = 0
    distribution_items: Any = None
    completed_executions: int = 0
    execution_results: dict[str, Any] = field(default_factory=dict)
    active_iterations: set[int] = field(default_factory=set)
    current_iteration: int = 0
    parallel_type: str | None = None


@dataclass
class LoopExecutionState:
    """Bookkeeping for one loop subflow."""

    max_iterations: int = 0
    loop_type: str | None = None
    for_each_items: Any = None
    execution_results: dict[str, Any] = field(default_factory=dict)
    current_iteration: int = 0


@dataclass
class ParallelBlockMapping:
    """Maps a virtual (per-branch) block id back to its source block."""

    original_block_id: str
    parallel_id: str
    iteration_index: int


class BlockLog(BaseModel):
    """One per-block execution record.

    Serialized with camelCase keys (blockId, startedAt, ...) because these
    records are what UIs poll and what the execution log store persists.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str | None = None
    block_id: str
    block_name: str | None = None
    block_type: str | None = None
    started_at: str
    ended_at: str
    duration_ms: float = 0.0
    success: bool = True
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Storage form (camelCase, None fields omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class ExecutionContext:
    """Mutable state of one workflow run."""

    execution_id: str
    workflow_id: str
    workspace_id: str | None = None
    is_deployed_context: bool = False

    block_states: dict[str, BlockState] = field(default_factory=dict)
    executed_blocks: set[str] = field(default_factory=set)
    active_execution_path: set[str] = field(default_factory=set)
    decisions: Decisions = field(default_factory=Decisions)

    # Subflow iteration bookkeeping
    loop_iterations: dict[str, int] = field(default_factory=dict)
    loop_items: dict[str, Any] = field(default_factory=dict)
    completed_loops: set[str] = field(default_factory=set)
    parallel_executions: dict[str, ParallelExecutionState] = field(default_factory=dict)
    loop_executions: dict[str, LoopExecutionState] = field(default_factory=dict)
    parallel_block_mapping: dict[str, ParallelBlockMapping] = field(default_factory=dict)
    current_virtual_block_id: str | None = None

    block_logs: list[BlockLog] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    environment_variables: dict[str, str] = field(default_factory=dict)
    workflow_variables: dict[str, Any] = field(default_factory=dict)
    workflow: dict[str, Any] | None = None  # frozen graph snapshot
    stream: bool = False
    selected_outputs: list[str] = field(default_factory=list)
    edges: list[dict[str, Any]] | None = None

    # Pause control
    should_pause_after_block: bool = False
    parent_execution_info: dict[str, Any] | None = None

    def mark_executed(
        self, block_id: str, output: dict[str, Any], execution_time: float = 0.0
    ) -> None:
        """Record a finished block, keeping block_states and executed_blocks consistent."""
        self.block_states[block_id] = BlockState(
            output=output, executed=True, execution_time=execution_time
        )
        self.executed_blocks.add(block_id)

    def block_output(self, block_id: str) -> dict[str, Any] | None:
        state = self.block_states.get(block_id)
        return state.output if state else None

    @property
    def wait_block_info(self) -> dict[str, Any] | None:
        info = self.metadata.get("waitBlockInfo")
        return info if isinstance(info, dict) else None

    @property
    def is_paused(self) -> bool:
        return bool(self.metadata.get("isPaused"))


__all__ = [
    "BlockLog",
    "BlockState",
    "Decisions",
    "ExecutionContext",
    "LoopExecutionState",
    "ParallelBlockMapping",
    "ParallelExecutionState",
    "utc_now",
]
