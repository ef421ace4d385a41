"""Block handler base class and handler registry.

Handlers implement one block type each. They are:
- Stateless: one instance serves every block of its type
- Typed: params validated into input_type, result returned as output_type
- Exception-driven: any exception fails the block (and the run), except
  ExecutionPaused, which suspends the run at that block

A handler that wants the run to stop after it completes (wait blocks) sets
run.context.should_pause_after_block and records metadata["waitBlockInfo"];
the graph executor checks the flag after every block.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, PrivateAttr

from .block import BlockInput, BlockOutput
from .cancellation import CancellationToken

if TYPE_CHECKING:
    from .execution_context import ExecutionContext
    from .references import ReferenceResolver
    from .runtime_context import RuntimeContext
    from .schema import BlockSpec, WorkflowGraph


@dataclass
class BlockRun:
    """Everything a handler may touch while executing one block."""

    block: BlockSpec
    context: ExecutionContext
    graph: WorkflowGraph
    runtime: RuntimeContext
    resolver: ReferenceResolver
    workflow_input: dict[str, Any] = field(default_factory=dict)
    cancellation: CancellationToken = field(default_factory=CancellationToken)


class BlockHandler(ABC):
    """Base class for block handlers.

    Example:
        class ValueHandler(BlockHandler):
            type_name = "value"
            input_type = ValueInput
            output_type = ValueOutput

            async def execute(self, inputs: ValueInput, run: BlockRun) -> ValueOutput:
                return ValueOutput(value=inputs.value)
    """

    type_name: ClassVar[str]
    input_type: ClassVar[type[BlockInput]]
    output_type: ClassVar[type[BlockOutput]]

    @abstractmethod
    async def execute(self, inputs: BlockInput, run: BlockRun) -> BlockOutput:
        """Execute block logic with validated params.

        Raises:
            ExecutionPaused: To suspend the run at this block
            Exception: Any other exception fails the block
        """

    def validate_params(self, params: dict[str, Any]) -> BlockInput:
        return self.input_type.model_validate(params)


class HandlerRegistry(BaseModel):
    """Maps block type names to handler instances."""

    model_config = {"arbitrary_types_allowed": True}

    _handlers: dict[str, BlockHandler] = PrivateAttr(default_factory=dict)

    def register(self, handler: BlockHandler) -> None:
        if handler.type_name in self._handlers:
            raise ValueError(f"Handler already registered: {handler.type_name}")
        self._handlers[handler.type_name] = handler

    def get(self, type_name: str) -> BlockHandler:
        if type_name not in self._handlers:
            available = sorted(self._handlers.keys())
            raise ValueError(f"Unknown block type: {type_name}. Available: {available}")
        return self._handlers[type_name]

    def has(self, type_name: str) -> bool:
        return type_name in self._handlers

    def list_types(self) -> list[str]:
        return list(self._handlers.keys())


def create_default_registry() -> HandlerRegistry:
    """Create a registry holding every built-in handler."""
    from .handlers_core import (
        ConditionHandler,
        FailHandler,
        RouterHandler,
        StarterHandler,
        ValueHandler,
    )
    from .handlers_wait import UserApprovalHandler, WaitHandler
    from .handlers_workflow import WorkflowBlockHandler

    registry = HandlerRegistry()
    registry.register(StarterHandler())
    registry.register(ValueHandler())
    registry.register(ConditionHandler())
    registry.register(RouterHandler())
    registry.register(FailHandler())
    registry.register(WaitHandler())
    registry.register(UserApprovalHandler())
    registry.register(WorkflowBlockHandler())
    return registry


__all__ = ["BlockHandler", "BlockRun", "HandlerRegistry", "create_default_registry"]
