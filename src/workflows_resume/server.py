"""FastMCP server initialization for workflows-resume.

This module initializes the MCP server and manages shared resources via lifespan context.
Tool implementations are in the tools module, HTTP resume endpoints in the routes module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization and cleanup
- Context injection for tool access to shared resources
- FastMCP server with stdio transport (sse / streamable-http for the resume routes)
"""

import asyncio
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, cast

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import (
    ApprovalChat,
    ExecutionLogStore,
    PauseStore,
    ResumeCoordinator,
    ResumeScheduler,
    RuntimeContext,
    SQLitePauseStore,
    WaitRegistry,
    WorkflowRegistry,
    create_default_registry,
    create_wait_registry,
)
from .engine.settings import EngineSettings

logger = logging.getLogger(__name__)

Transport = Literal["stdio", "sse", "streamable-http"]
VALID_TRANSPORTS: tuple[Transport, ...] = ("stdio", "sse", "streamable-http")

# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


def _user_template_dirs() -> list[Path]:
    """Existing directories named in WORKFLOWS_TEMPLATE_PATHS, in order."""
    dirs: list[Path] = []
    for entry in os.getenv("WORKFLOWS_TEMPLATE_PATHS", "").split(","):
        if not entry.strip():
            continue
        candidate = Path(entry.strip()).expanduser()
        if candidate.is_dir():
            dirs.append(candidate.resolve())
        else:
            logger.warning(f"Ignoring template path {candidate}: not a directory")
    return dirs


def load_workflows(registry: WorkflowRegistry) -> None:
    """Register the bundled graphs, then graphs from WORKFLOWS_TEMPLATE_PATHS.

    Directories load in order with on_duplicate="overwrite", so a user
    graph replaces a bundled one of the same name, and a later directory
    wins over an earlier one. Paths may use ~.

    Raises:
        RuntimeError: If the bundled templates are missing or loading fails
    """
    bundled = Path(__file__).parent / "templates"
    if not bundled.is_dir():
        raise RuntimeError(f"Bundled templates not found at {bundled}; reinstall workflows-resume-mcp")

    user_dirs = _user_template_dirs()
    result = registry.load_from_directories([bundled, *user_dirs], on_duplicate="overwrite")
    if not result.is_success or result.value is None:
        logger.error(f"Workflow loading failed: {result.error}")
        raise RuntimeError(f"Cannot start without workflows: {result.error}")

    counts = result.value
    logger.info(f"Bundled graphs: {counts.get(str(bundled.resolve()), 0)}")
    for directory in user_dirs:
        logger.info(f"Graphs from {directory}: {counts.get(str(directory), 0)}")
    logger.info(f"{len(registry)} workflows registered")


async def create_app_context(
    settings: EngineSettings | None = None,
    *,
    registry: WorkflowRegistry | None = None,
    pause_store: PauseStore | None = None,
    log_store: ExecutionLogStore | None = None,
    wait_registry: WaitRegistry | None = None,
) -> AppContext:
    """Build every shared service once and wire them together.

    Anything passed in is used as-is (tests inject in-memory stores); the
    rest is built from settings. When no registry is given, templates are
    loaded via load_workflows().

    Durable state lives under StateConfig.get_state_dir() (WORKFLOWS_STATE_DIR);
    see EngineSettings for the remaining WORKFLOWS_* variables.
    """
    settings = settings or EngineSettings.from_env()

    if registry is None:
        registry = WorkflowRegistry()
        load_workflows(registry)

    if pause_store is None:
        pause_store = SQLitePauseStore(base_url=settings.base_url)
        await pause_store.init()
    logger.info(f"Pause store: {pause_store.__class__.__name__}")

    if log_store is None:
        log_store = ExecutionLogStore()
        await log_store.init()

    if wait_registry is None:
        wait_registry = await create_wait_registry(settings.redis_url, settings.wait_timeout)

    runtime = RuntimeContext(
        workflow_registry=registry,
        handler_registry=create_default_registry(),
        pause_store=pause_store,
        wait_registry=wait_registry,
        log_store=log_store,
        settings=settings,
    )
    coordinator = ResumeCoordinator(runtime)
    if coordinator.authenticator.is_open:
        logger.warning(
            "No WORKFLOWS_API_KEYS or WORKFLOWS_SESSION_TOKENS configured, "
            "API resume accepts unauthenticated requests"
        )

    scheduler = ResumeScheduler(coordinator, settings.scheduler_interval)
    await scheduler.start()

    return AppContext(
        registry=registry,
        runtime=runtime,
        pause_store=pause_store,
        wait_registry=wait_registry,
        log_store=log_store,
        coordinator=coordinator,
        approval_chat=ApprovalChat(coordinator, settings),
        settings=settings,
        scheduler=scheduler,
    )


async def close_app_context(app_context: AppContext) -> None:
    """Release shared resources in reverse order of creation."""
    if app_context.scheduler is not None:
        await app_context.scheduler.stop()
    await app_context.wait_registry.close()
    await app_context.pause_store.close()


class _SharedAppContext:
    """Process-wide AppContext shared by MCP sessions and HTTP routes.

    The MCP lifespan runs per session on the HTTP transports, while custom
    routes run outside any session. Both go through this holder so there is
    exactly one pause store, wait registry and scheduler per process.
    """

    def __init__(self) -> None:
        self._context: AppContext | None = None
        self._users = 0
        self._lock = asyncio.Lock()

    async def get(self) -> AppContext:
        async with self._lock:
            if self._context is None:
                logger.info("Initializing MCP server resources...")
                self._context = await create_app_context()
            return self._context

    async def acquire(self) -> AppContext:
        context = await self.get()
        async with self._lock:
            self._users += 1
        return context

    async def release(self) -> None:
        async with self._lock:
            self._users = max(0, self._users - 1)
            if self._users or self._context is None:
                return
            context, self._context = self._context, None
        logger.info("Shutting down MCP server resources...")
        await close_app_context(context)


shared_context = _SharedAppContext()


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with resource initialization and cleanup.

    This lifespan context manager:
    1. Initializes shared resources (workflow registry, pause store, wait registry,
       log store, resume coordinator, schedule ticker)
    2. Loads workflows from built-in and user template directories
    3. Yields context to make resources available to tools
    4. Cleans up resources when the last user releases them

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with initialized resources
    """
    app_context = await shared_context.acquire()
    try:
        yield app_context
    finally:
        await shared_context.release()


# Initialize MCP server with lifespan management
# Following Python MCP naming convention: {service}_mcp
mcp = FastMCP("workflows_resume", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def get_transport() -> Transport:
    """Read WORKFLOWS_TRANSPORT (stdio | sse | streamable-http), default stdio.

    The approval, API and webhook resume routes are only served on the
    HTTP transports.
    """
    transport = os.getenv("WORKFLOWS_TRANSPORT", "stdio").strip().lower()
    if transport not in VALID_TRANSPORTS:
        print(
            f"Warning: Invalid WORKFLOWS_TRANSPORT '{transport}'. "
            f"Valid transports: {', '.join(VALID_TRANSPORTS)}. Using stdio.",
            file=sys.stderr,
        )
        return "stdio"
    return cast(Transport, transport)


def main() -> None:
    """Entry point for running the MCP server.

    This function is called when the server is run directly via:
    - uv run python -m workflows_resume
    - python -m workflows_resume
    - uv run workflows-resume-mcp (entry point configured in pyproject.toml)
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("WORKFLOWS_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid WORKFLOWS_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    # Configure logging to stderr (MCP requirement)
    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    transport = get_transport()
    logger.info(f"Starting MCP server on {transport} transport (press Ctrl+C to stop)...")

    try:
        # anyio.run() (used internally by mcp.run()) raises KeyboardInterrupt on SIGINT
        mcp.run(transport=transport)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Server infrastructure
    "mcp",
    "main",
    "AppContext",
    "AppContextType",
    "create_app_context",
    "close_app_context",
    "shared_context",
    "get_transport",
    # Workflow loading (exposed for testing)
    "load_workflows",
]
