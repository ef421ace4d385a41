"""
Workflow graph schema.

Graphs are authored as YAML (see templates/) and validated into these
pydantic models. A validated graph is also what gets frozen into a pause
record (via context_codec.serialize_workflow_state), so a resume always
runs against the topology the execution started with, even if the YAML
has since been edited.

Example YAML:
    name: expense-approval
    description: Route an expense through a manager approval
    blocks:
      - id: start
        type: starter
      - id: approve
        type: user_approval
        params:
          humanOperation: approval
          content: "Approve expense of <start.amount>?"
      - id: book
        type: value
        params:
          value: "<approve.approved>"
    edges:
      - {source: start, target: approve}
      - {source: approve, target: book}
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .load_result import LoadResult


class BlockSpec(BaseModel):
    """One node of the graph."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Unique block identifier")
    type: str = Field(min_length=1, description="Handler type name (starter, wait, ...)")
    name: str | None = Field(default=None, description="Display name")
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Handler parameters; string values may contain <block.path> references",
    )

    @property
    def display_name(self) -> str:
        return self.name or self.id


class Edge(BaseModel):
    """Directed connection between two blocks.

    source_handle selects the branch for fan-out blocks: condition blocks use
    "condition-<branch>", and "error" marks an error path that is never taken
    on success.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    source: str
    target: str
    source_handle: str | None = None


class WorkflowGraph(BaseModel):
    """Complete workflow graph definition."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(
        description="Unique workflow identifier (also the workflow id of its executions)",
        pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$",
        min_length=1,
        max_length=100,
    )
    description: str = Field(default="", description="Workflow description")
    version: str = Field(default="1.0", pattern=r"^\d+\.\d+(\.\d+)?$")
    tags: list[str] = Field(default_factory=list)
    blocks: list[BlockSpec] = Field(min_length=1)
    edges: list[Edge] = Field(default_factory=list)
    loops: dict[str, Any] = Field(default_factory=dict)
    parallels: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_topology(self) -> WorkflowGraph:
        """Reject duplicate block ids and edges pointing at unknown blocks."""
        seen: set[str] = set()
        for block in self.blocks:
            if block.id in seen:
                raise ValueError(f"Duplicate block id: {block.id}")
            seen.add(block.id)

        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in seen:
                    raise ValueError(
                        f"Edge {edge.source} -> {edge.target} references unknown block '{endpoint}'"
                    )
        return self

    @property
    def id(self) -> str:
        return self.name

    def get_block(self, block_id: str) -> BlockSpec | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def incoming(self, block_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.target == block_id]

    def outgoing(self, block_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.source == block_id]

    def entry_blocks(self) -> list[BlockSpec]:
        """Blocks with no incoming edges (where traversal starts)."""
        targets = {edge.target for edge in self.edges}
        return [block for block in self.blocks if block.id not in targets]

    @staticmethod
    def validate_yaml_dict(data: dict[str, Any]) -> LoadResult[WorkflowGraph]:
        """
        Validate a YAML dictionary against the schema.

        Returns:
            LoadResult.success(WorkflowGraph) if valid
            LoadResult.failure(error_message) with pydantic's validation errors
        """
        try:
            return LoadResult.success(WorkflowGraph(**data))
        except Exception as e:
            return LoadResult.failure(f"Workflow validation failed:\n{e}")


__all__ = ["BlockSpec", "Edge", "WorkflowGraph"]
