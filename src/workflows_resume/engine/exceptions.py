"""Exceptions raised by the pause/resume engine.

Two families live here:

- ResumeError and its subclasses: client-visible failures of a resume trigger.
  Each carries the HTTP-style status code the outer surface (MCP tools and HTTP
  routes) reports, and renders itself via to_response().
- ExecutionPaused and RecursionDepthExceededError: control flow signals raised
  inside graph execution.
"""

from __future__ import annotations

from typing import Any


class ResumeError(Exception):
    """Base class for resume trigger failures.

    Attributes:
        message: Human readable error message (returned to the caller)
        status_code: HTTP-style status code for the outer surface
        details: Extra fields merged into the error response
    """

    status_code: int = 500

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        """Format error for MCP tool and HTTP route responses."""
        return {"success": False, "error": self.message, **self.details}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, status_code={self.status_code})"


class ResumeValidationError(ResumeError):
    """Resume payload rejected before any state mutation (missing field, bad JSON)."""

    status_code = 400


class ResumeUnauthorizedError(ResumeError):
    """Missing or invalid credential (webhook secret, API key, session)."""

    status_code = 401


class ResumeForbiddenError(ResumeError):
    """Credential is valid but the trigger is not allowed for this execution."""

    status_code = 403


class PausedExecutionNotFoundError(ResumeError):
    """No paused execution exists for the resume key."""

    status_code = 404


class ResumeAlreadyUsedError(ResumeError):
    """The approval token was already consumed.

    Distinct from PausedExecutionNotFoundError so UIs can show
    "link already used" instead of "invalid link".
    """

    status_code = 410

    def __init__(self, message: str = "This approval link has already been used", **details: Any):
        super().__init__(message, alreadyUsed=True, **details)


class PausePersistenceError(ResumeError):
    """Writing a pause record failed. Fatal to the triggering request."""

    status_code = 500


class ApprovalChatError(ResumeError):
    """The chat model behind the approval page failed or returned nothing."""

    status_code = 502


class RecursionDepthExceededError(Exception):
    """
    Workflow recursion depth limit exceeded.

    Raised when a workflow block would start a child workflow beyond the
    configured maximum nesting depth, and when a cascading parent resume
    chain is deeper than that same limit.

    The maximum recursion depth is controlled by the WORKFLOWS_MAX_RECURSION_DEPTH
    environment variable (default: 50).

    Attributes:
        workflow_id: Workflow that exceeded the limit
        current_depth: Depth at which the limit was exceeded
        max_depth: Configured maximum recursion depth
        workflow_stack: Workflow ids of the enclosing executions
    """

    def __init__(
        self,
        workflow_id: str,
        current_depth: int,
        max_depth: int,
        workflow_stack: list[str],
    ):
        self.workflow_id = workflow_id
        self.current_depth = current_depth
        self.max_depth = max_depth
        self.workflow_stack = workflow_stack

        call_chain = " → ".join(workflow_stack + [workflow_id])
        super().__init__(
            f"Recursion depth limit exceeded for workflow '{workflow_id}' "
            f"(depth: {current_depth}, limit: {max_depth}). "
            f"Call chain: {call_chain}\n\n"
            f"To increase the limit, set the WORKFLOWS_MAX_RECURSION_DEPTH "
            f"environment variable to a higher value."
        )

    def __repr__(self) -> str:
        return (
            f"RecursionDepthExceededError(workflow={self.workflow_id!r}, "
            f"depth={self.current_depth}, limit={self.max_depth})"
        )


class ExecutionPaused(Exception):  # noqa: N818
    # Not an error - control flow mechanism (like StopIteration)
    """
    Block execution suspended the workflow.

    Raised by handlers that cannot finish until something outside the current
    traversal happens (a child workflow that paused at its own wait block).
    The graph executor catches it at the block boundary, leaves the block
    unexecuted, records wait_block_info on the context and stops traversal.

    Attributes:
        block_id: Block that suspended
        wait_block_info: Pause description stored as metadata["waitBlockInfo"]
    """

    def __init__(self, block_id: str, wait_block_info: dict[str, Any]):
        self.block_id = block_id
        self.wait_block_info = wait_block_info
        super().__init__(f"Execution paused at block: {block_id}")

    def __repr__(self) -> str:
        return f"ExecutionPaused(block_id={self.block_id!r})"


__all__ = [
    "ApprovalChatError",
    "ExecutionPaused",
    "PausePersistenceError",
    "PausedExecutionNotFoundError",
    "RecursionDepthExceededError",
    "ResumeAlreadyUsedError",
    "ResumeError",
    "ResumeForbiddenError",
    "ResumeUnauthorizedError",
    "ResumeValidationError",
]
