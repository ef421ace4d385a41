"""Pause/resume workflow engine.

Key Components:

- ExecutionContext: Mutable state of one graph execution
- context_codec: ExecutionContext <-> storage-safe JSON (pair lists, arrays)
- PauseStore: Durable pause records (SQLite, in-memory)
- WaitRegistry: Cross-process wake signaling for synchronous waits (Redis, in-memory)
- GraphExecutor: Walks a graph, stops at wait blocks, re-enters paused contexts
- WorkflowRunner: Fresh executions plus pause/log persistence
- ResumeCoordinator: Human, API, webhook, schedule and child-completion resumes
- ResumeScheduler: Background resume of due schedule waits
- ExecutionLogStore: Execution logs, trace spans and run counters

Architecture:
- Dependencies are constructed once (server lifespan) and passed explicitly
  through RuntimeContext; nothing is a module-level singleton
- ExecutionResult.to_response() is the single formatter for run responses
- ResumeError subclasses carry the status code reported by tools and routes
- ExecutionPaused is control flow (child workflow pause), not an error
"""

# Import handlers (they auto-register in create_default_registry)
from . import (  # noqa: F401
    handlers_core,  # starter, value, condition, router, fail
    handlers_wait,  # wait, user_approval
    handlers_workflow,  # workflow (child executions)
)
from .approval_chat import ApprovalChat
from .auth import ResumeAuthenticator
from .block import BlockInput, BlockOutput
from .cancellation import CancellationToken
from .context_codec import (
    deserialize_context,
    normalize_serialized_context,
    serialize_context,
    serialize_workflow_state,
)
from .exceptions import (
    ApprovalChatError,
    ExecutionPaused,
    PausedExecutionNotFoundError,
    PausePersistenceError,
    RecursionDepthExceededError,
    ResumeAlreadyUsedError,
    ResumeError,
    ResumeForbiddenError,
    ResumeUnauthorizedError,
    ResumeValidationError,
)
from .execution_context import BlockLog, BlockState, ExecutionContext
from .execution_log import ExecutionLogStore, build_trace_spans, merge_logs
from .execution_result import ExecutionResult
from .executor_base import BlockHandler, HandlerRegistry, create_default_registry
from .graph_executor import GraphExecutor
from .load_result import LoadResult
from .loader import load_workflow_from_yaml
from .pause_store import (
    InMemoryPauseStore,
    PausedExecution,
    PauseParams,
    PauseReceipt,
    PauseStore,
    SQLitePauseStore,
)
from .registry import WorkflowRegistry
from .resume_coordinator import ResumeCoordinator
from .resume_scheduler import ResumeScheduler
from .runtime_context import RuntimeContext
from .schema import BlockSpec, Edge, WorkflowGraph
from .settings import EngineSettings
from .wait_registry import (
    InMemoryWaitRegistry,
    RedisWaitRegistry,
    WaitInfo,
    WaitRegistry,
    create_wait_registry,
)
from .workflow_runner import WorkflowRun, WorkflowRunner

__all__ = [
    # Core types
    "LoadResult",
    "BlockInput",
    "BlockOutput",
    "BlockLog",
    "BlockState",
    "BlockSpec",
    "Edge",
    "WorkflowGraph",
    "ExecutionContext",
    "ExecutionResult",
    "CancellationToken",
    "RuntimeContext",
    "EngineSettings",
    # Codec
    "serialize_context",
    "deserialize_context",
    "normalize_serialized_context",
    "serialize_workflow_state",
    # Execution
    "BlockHandler",
    "HandlerRegistry",
    "create_default_registry",
    "GraphExecutor",
    "WorkflowRun",
    "WorkflowRunner",
    "WorkflowRegistry",
    "load_workflow_from_yaml",
    # Pause / resume
    "PauseStore",
    "InMemoryPauseStore",
    "SQLitePauseStore",
    "PausedExecution",
    "PauseParams",
    "PauseReceipt",
    "WaitRegistry",
    "InMemoryWaitRegistry",
    "RedisWaitRegistry",
    "WaitInfo",
    "create_wait_registry",
    "ResumeAuthenticator",
    "ResumeCoordinator",
    "ResumeScheduler",
    "ApprovalChat",
    # Logs
    "ExecutionLogStore",
    "build_trace_spans",
    "merge_logs",
    # Errors
    "ResumeError",
    "ResumeValidationError",
    "ResumeUnauthorizedError",
    "ResumeForbiddenError",
    "PausedExecutionNotFoundError",
    "ResumeAlreadyUsedError",
    "PausePersistenceError",
    "ApprovalChatError",
    "ExecutionPaused",
    "RecursionDepthExceededError",
]
