"""
Reference resolution and safe condition evaluation for block params.

References use angle brackets:
- <start.field>            - workflow input (the starter block's output)
- <blockId.path.to.value>  - output of an executed block, by id
- <blockname.path>         - same, by display name with spaces removed, case-insensitive

A string that is exactly one reference resolves to the raw value (keeping
its type); references embedded in longer text are stringified. References
to unknown blocks are left untouched so markup such as <br> survives.

Condition expressions are evaluated with an AST whitelist after references
are resolved to Python literals.
"""

import ast
import json
import operator
import re
from typing import Any

from .execution_context import ExecutionContext

REFERENCE_PATTERN = re.compile(r"<([A-Za-z_][\w\-]*)((?:\.[\w\-]+)*)>")


class InvalidConditionError(Exception):
    """Raised when a condition expression is invalid or unsafe."""


def normalize_block_name(name: str) -> str:
    return re.sub(r"\s+", "", name).lower()


class ReferenceResolver:
    """Resolves <block.path> references against an ExecutionContext.

    Args:
        context: Execution whose block outputs are referenced
        workflow_input: Input of the run (exposed as <start.*>)
        block_names: Display name -> block id, for name-based references
    """

    def __init__(
        self,
        context: ExecutionContext,
        workflow_input: dict[str, Any] | None = None,
        block_names: dict[str, str] | None = None,
    ):
        self.context = context
        self.workflow_input = workflow_input or {}
        self.block_names = {normalize_block_name(k): v for k, v in (block_names or {}).items()}

    def resolve(self, value: Any, for_eval: bool = False) -> Any:
        """Resolve references recursively in strings, dicts and lists."""
        if isinstance(value, str):
            return self._resolve_string(value, for_eval)
        if isinstance(value, dict):
            return {k: self.resolve(v, for_eval) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve(v, for_eval) for v in value]
        return value

    def lookup(self, root: str, path: list[str]) -> tuple[bool, Any]:
        """Return (found, value) for a reference root and attribute path."""
        if root == "start":
            current: Any = self.workflow_input
        else:
            block_id = root if root in self.context.block_states else self.block_names.get(
                normalize_block_name(root)
            )
            if block_id is None or block_id not in self.context.block_states:
                return False, None
            current = self.context.block_states[block_id].output

        for segment in path:
            if isinstance(current, dict) and segment in current:
                current = current[segment]
            elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
                current = current[int(segment)]
            else:
                return True, None
        return True, current

    def _resolve_string(self, text: str, for_eval: bool) -> Any:
        whole = REFERENCE_PATTERN.fullmatch(text)
        if whole and not for_eval:
            found, value = self.lookup(whole.group(1), _split_path(whole.group(2)))
            return value if found else text

        def replace(match: re.Match[str]) -> str:
            found, value = self.lookup(match.group(1), _split_path(match.group(2)))
            if not found:
                return match.group(0)
            return repr(value) if for_eval else _format_for_string(value)

        return REFERENCE_PATTERN.sub(replace, text)


class ConditionEvaluator:
    """Evaluates boolean expressions with an explicit operator whitelist."""

    SAFE_OPERATORS: dict[type, Any] = {
        ast.Eq: operator.eq,
        ast.NotEq: operator.ne,
        ast.Lt: operator.lt,
        ast.LtE: operator.le,
        ast.Gt: operator.gt,
        ast.GtE: operator.ge,
        ast.Not: operator.not_,
        ast.In: lambda x, y: x in y,
        ast.NotIn: lambda x, y: x not in y,
    }

    def evaluate(self, expression: str, resolver: ReferenceResolver) -> bool:
        """
        Resolve references in expression, then evaluate it.

        Raises:
            InvalidConditionError: If the expression is invalid, unsafe or not boolean

        Example:
            evaluator.evaluate("<start.amount> > 100 and <review.approved>", resolver)
        """
        resolved = resolver.resolve(expression, for_eval=True)
        expr = resolved.replace("\n", " ").strip()
        expr = re.sub(r"\btrue\b", "True", expr)
        expr = re.sub(r"\bfalse\b", "False", expr)

        try:
            tree = ast.parse(expr, mode="eval")
        except SyntaxError as e:
            raise InvalidConditionError(f"Invalid syntax in condition '{expression}': {e}") from e

        result = self._eval_node(tree.body)
        if not isinstance(result, bool):
            raise InvalidConditionError(
                f"Condition must evaluate to boolean, got {type(result).__name__}: {result!r}"
            )
        return result

    def _eval_node(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.BoolOp):
            values = [self._eval_node(v) for v in node.values]
            if isinstance(node.op, ast.And):
                return all(values)
            return any(values)

        if isinstance(node, ast.Compare):
            left = self._eval_node(node.left)
            for op, comparator in zip(node.ops, node.comparators, strict=True):
                op_func = self.SAFE_OPERATORS.get(type(op))
                if op_func is None:
                    raise InvalidConditionError(
                        f"Unsupported comparison operator: {type(op).__name__}"
                    )
                right = self._eval_node(comparator)
                try:
                    if not op_func(left, right):
                        return False
                except TypeError as e:
                    raise InvalidConditionError(f"Cannot compare {left!r} and {right!r}") from e
                left = right
            return True

        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
            return not self._eval_node(node.operand)

        if isinstance(node, ast.List | ast.Tuple):
            return [self._eval_node(elt) for elt in node.elts]

        raise InvalidConditionError(
            f"Unsupported expression type: {type(node).__name__}. "
            f"Only literals, comparisons, and boolean operators are allowed."
        )


def _split_path(path: str) -> list[str]:
    return [segment for segment in path.split(".") if segment]


def _format_for_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict | list):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "ConditionEvaluator",
    "InvalidConditionError",
    "REFERENCE_PATTERN",
    "ReferenceResolver",
    "normalize_block_name",
]
