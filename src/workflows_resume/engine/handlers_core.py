"""Core block handlers: starter, value, condition, router, fail.

These are deliberately small. They exist so graphs can route around wait
blocks; condition and router record their choice in context.decisions,
which is what lets a resumed execution recompute reachability correctly.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic import Field

from .block import BlockInput, BlockOutput
from .executor_base import BlockHandler, BlockRun
from .references import ConditionEvaluator

logger = logging.getLogger(__name__)

_evaluator = ConditionEvaluator()


# ============================================================================
# Starter
# ============================================================================


class InputField(BlockInput):
    name: str
    type: str = "string"
    required: bool = False
    default: Any = None


class StarterInput(BlockInput):
    input_format: list[InputField] = Field(
        default_factory=list, description="Declared workflow inputs (defaults applied here)"
    )


class StarterOutput(BlockOutput):
    """Workflow input fields, one attribute each."""


class StarterHandler(BlockHandler):
    """Entry block: exposes the workflow input as its output (<start.field>)."""

    type_name: ClassVar[str] = "starter"
    input_type: ClassVar[type[BlockInput]] = StarterInput
    output_type: ClassVar[type[BlockOutput]] = StarterOutput

    async def execute(self, inputs: StarterInput, run: BlockRun) -> StarterOutput:  # type: ignore[override]
        values = dict(run.workflow_input)
        for declared in inputs.input_format:
            if declared.name not in values:
                if declared.required:
                    raise ValueError(f"Missing required workflow input: {declared.name}")
                values[declared.name] = declared.default
        run.workflow_input.update(values)
        return StarterOutput(**values)


# ============================================================================
# Value
# ============================================================================


class ValueInput(BlockInput):
    value: Any = None
    fields: dict[str, Any] = Field(default_factory=dict)


class ValueOutput(BlockOutput):
    value: Any = None


class ValueHandler(BlockHandler):
    """Emits its (reference-resolved) params. Stands in for ordinary work blocks."""

    type_name: ClassVar[str] = "value"
    input_type: ClassVar[type[BlockInput]] = ValueInput
    output_type: ClassVar[type[BlockOutput]] = ValueOutput

    async def execute(self, inputs: ValueInput, run: BlockRun) -> ValueOutput:  # type: ignore[override]
        return ValueOutput(value=inputs.value, **inputs.fields)


# ============================================================================
# Condition
# ============================================================================


class ConditionBranch(BlockInput):
    id: str = Field(description="Branch id; edges select it with source_handle condition-<id>")
    expression: str | None = Field(default=None, description="None marks the else branch")


class ConditionInput(BlockInput):
    conditions: list[ConditionBranch] = Field(min_length=1)


class ConditionOutput(BlockOutput):
    condition_result: bool
    selected_branch: str | None = None


class ConditionHandler(BlockHandler):
    """Evaluates branches in order; the first true one (or the else branch) is taken."""

    type_name: ClassVar[str] = "condition"
    input_type: ClassVar[type[BlockInput]] = ConditionInput
    output_type: ClassVar[type[BlockOutput]] = ConditionOutput
    raw_params: ClassVar[frozenset[str]] = frozenset({"conditions"})

    async def execute(self, inputs: ConditionInput, run: BlockRun) -> ConditionOutput:  # type: ignore[override]
        selected: str | None = None
        for branch in inputs.conditions:
            if branch.expression is None or _evaluator.evaluate(branch.expression, run.resolver):
                selected = branch.id
                break

        # "" matches no edge handle: nothing downstream runs
        run.context.decisions.condition[run.block.id] = selected or ""
        logger.debug(f"Condition {run.block.id} selected branch {selected!r}")
        return ConditionOutput(condition_result=selected is not None, selected_branch=selected)


# ============================================================================
# Router
# ============================================================================


class Route(BlockInput):
    target: str
    when: str | None = None


class RouterInput(BlockInput):
    routes: list[Route] = Field(min_length=1)


class RouterOutput(BlockOutput):
    selected_path: dict[str, str]


class RouterHandler(BlockHandler):
    """Picks exactly one downstream target."""

    type_name: ClassVar[str] = "router"
    input_type: ClassVar[type[BlockInput]] = RouterInput
    output_type: ClassVar[type[BlockOutput]] = RouterOutput
    raw_params: ClassVar[frozenset[str]] = frozenset({"routes"})

    async def execute(self, inputs: RouterInput, run: BlockRun) -> RouterOutput:  # type: ignore[override]
        for route in inputs.routes:
            if route.when is None or _evaluator.evaluate(route.when, run.resolver):
                target = run.graph.get_block(route.target)
                if target is None:
                    raise ValueError(f"Router {run.block.id} targets unknown block {route.target}")
                run.context.decisions.router[run.block.id] = route.target
                return RouterOutput(
                    selected_path={
                        "blockId": target.id,
                        "blockType": target.type,
                        "blockTitle": target.display_name,
                    }
                )
        raise ValueError(f"Router {run.block.id}: no route matched")


# ============================================================================
# Fail
# ============================================================================


class FailInput(BlockInput):
    message: str = "Block failed"


class FailHandler(BlockHandler):
    """Always raises. Lets graphs (and tests) exercise failure capture."""

    type_name: ClassVar[str] = "fail"
    input_type: ClassVar[type[BlockInput]] = FailInput
    output_type: ClassVar[type[BlockOutput]] = BlockOutput

    async def execute(self, inputs: FailInput, run: BlockRun) -> BlockOutput:  # type: ignore[override]
        raise RuntimeError(inputs.message)
