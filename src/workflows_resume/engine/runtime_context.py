"""
Runtime dependencies for graph execution.

Provides access to:
- Workflow registry (child workflow blocks)
- Handler registry (block dispatch)
- Pause store and wait registry (wait blocks, child pauses)
- Engine settings (base URL, timeouts, limits)

Constructed once at process start (see server.app_lifespan) and passed
down explicitly; nothing in the engine reaches for a global instance.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .exceptions import RecursionDepthExceededError
from .settings import EngineSettings

if TYPE_CHECKING:
    from .execution_log import ExecutionLogStore
    from .executor_base import HandlerRegistry
    from .pause_store import PauseStore
    from .registry import WorkflowRegistry
    from .wait_registry import WaitRegistry


class RuntimeContext:
    """
    Context providing dependencies for workflow execution.

    Design:
    - Immutable after creation (use create_child_context for nesting)
    - Holds references to shared, process-wide services
    - Tracks the nested workflow stack for recursion limiting
    """

    def __init__(
        self,
        workflow_registry: WorkflowRegistry,
        handler_registry: HandlerRegistry,
        pause_store: PauseStore | None = None,
        wait_registry: WaitRegistry | None = None,
        log_store: ExecutionLogStore | None = None,
        settings: EngineSettings | None = None,
        workflow_stack: list[str] | None = None,
    ):
        self.workflow_registry = workflow_registry
        self.handler_registry = handler_registry
        self.pause_store = pause_store
        self.wait_registry = wait_registry
        self.log_store = log_store
        self.settings = settings or EngineSettings()
        self.workflow_stack = workflow_stack or []

    @property
    def max_recursion_depth(self) -> int:
        return self.settings.max_recursion_depth

    def create_child_context(self, workflow_id: str) -> RuntimeContext:
        """
        Create context for a nested workflow.

        Raises:
            RecursionDepthExceededError: If nesting would exceed max_recursion_depth
        """
        self.check_recursion_depth(workflow_id)
        return RuntimeContext(
            workflow_registry=self.workflow_registry,
            handler_registry=self.handler_registry,
            pause_store=self.pause_store,
            wait_registry=self.wait_registry,
            log_store=self.log_store,
            settings=self.settings,
            workflow_stack=self.workflow_stack + [workflow_id],
        )

    def check_recursion_depth(self, workflow_id: str) -> None:
        current_depth = len(self.workflow_stack)
        if current_depth >= self.max_recursion_depth:
            raise RecursionDepthExceededError(
                workflow_id=workflow_id,
                current_depth=current_depth + 1,
                max_depth=self.max_recursion_depth,
                workflow_stack=self.workflow_stack,
            )


__all__ = ["RuntimeContext"]
