"""Shared context types for MCP server.

This module contains context types used across the server, tools and routes
modules, separated to avoid circular imports.
"""

from dataclasses import dataclass

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import (
    ApprovalChat,
    ExecutionLogStore,
    PauseStore,
    ResumeCoordinator,
    ResumeScheduler,
    RuntimeContext,
    WaitRegistry,
    WorkflowRegistry,
    WorkflowRunner,
)
from .engine.settings import EngineSettings


@dataclass
class AppContext:
    """Application context containing shared resources for MCP tools and routes.

    Created once during server startup; every service is constructed there and
    passed down explicitly, so nothing in the engine reaches for a global.
    """

    registry: WorkflowRegistry
    runtime: RuntimeContext
    pause_store: PauseStore
    wait_registry: WaitRegistry
    log_store: ExecutionLogStore
    coordinator: ResumeCoordinator
    approval_chat: ApprovalChat
    settings: EngineSettings
    scheduler: ResumeScheduler | None = None

    def create_runner(self) -> WorkflowRunner:
        """Create a WorkflowRunner bound to the shared runtime."""
        return WorkflowRunner(self.runtime)


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
