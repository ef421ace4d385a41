"""MCP tool implementations for workflow execution and resume.

This module exposes the engine over the MCP protocol: starting executions,
inspecting paused ones, and driving every resume trigger (approval links,
API resume, webhooks, synchronous waits).

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Type hints for automatic schema generation
- Async functions for all tools
- Clear docstrings (become tool descriptions)

Resume failures are returned, not raised: every ResumeError is rendered
with to_response() plus its statusCode so MCP clients see the same
outcome the HTTP routes report.
"""

import json
from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContextType
from .engine import ResumeError
from .formatting import (
    format_paused_list_markdown,
    format_workflow_list_markdown,
    format_workflow_not_found_error,
)
from .server import mcp


def _error_response(e: ResumeError) -> dict[str, Any]:
    return {**e.to_response(), "statusCode": e.status_code}


# =============================================================================
# Workflow Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Execute Workflow",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,  # Execution creates side effects
        openWorldHint=True,  # Wait blocks send notifications, webhooks resume it
    )
)
async def execute_workflow(
    workflow: Annotated[
        str,
        Field(
            description="Workflow name (use list_workflows() to discover)",
            min_length=1,
            max_length=200,
        ),
    ],
    inputs: Annotated[
        dict[str, Any] | None,
        Field(description="Workflow input, readable as <start.field> in block params"),
    ] = None,
    deployed: Annotated[
        bool,
        Field(description="Run as a deployed execution (required for webhook resume)"),
    ] = False,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Run a workflow by name. Required: workflow. Optional: inputs, deployed.

    A run that reaches a wait block returns isPaused=true with the approval
    token and approve URL under "pause".
    """
    # Access shared resources from lifespan context
    app_ctx = ctx.request_context.lifespan_context
    registry = app_ctx.registry

    if workflow not in registry:
        return format_workflow_not_found_error(workflow, registry.list_names())

    runner = app_ctx.create_runner()
    try:
        run = await runner.run(
            registry.get(workflow),
            inputs or {},
            is_deployed_context=deployed,
        )
    except ResumeError as e:
        return _error_response(e)
    return run.to_response()


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Workflows",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_workflows(
    tags: Annotated[
        list[str],
        Field(
            description="Filter by tags (AND logic). Empty list returns all workflows.",
            max_length=20,
        ),
    ] = [],
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> str:
    """List workflow templates. Optional: tags (filter), format (json|markdown)."""
    app_ctx = ctx.request_context.lifespan_context

    workflows = [
        info
        for info in app_ctx.registry.list_all_metadata()
        if all(tag in info["tags"] for tag in tags)
    ]

    if format == "markdown":
        return format_workflow_list_markdown(workflows, tags or None)
    return json.dumps(workflows)


# =============================================================================
# Paused Execution Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Paused Executions",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_paused_executions(
    workflow: Annotated[
        str | None,
        Field(description="Only executions of this workflow", max_length=200),
    ] = None,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> str:
    """List resumable executions, newest first. Optional: workflow, format."""
    app_ctx = ctx.request_context.lifespan_context
    records = await app_ctx.pause_store.list_paused(workflow_id=workflow)

    if format == "markdown":
        return format_paused_list_markdown(records)
    return json.dumps([record.summary() for record in records])


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Paused Execution",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def get_paused_execution(
    execution_id: Annotated[
        str,
        Field(description="Execution ID of the paused run", min_length=1, max_length=100),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Get one paused execution's metadata and logs. Required: execution_id."""
    app_ctx = ctx.request_context.lifespan_context
    record = await app_ctx.pause_store.load(execution_id)
    if record is None:
        return {
            "success": False,
            "error": "No paused execution found for this ID",
            "executionId": execution_id,
            "message": "Use list_paused_executions() to see resumable executions.",
        }
    return {"success": True, **record.summary(), "logs": record.logs}


# =============================================================================
# Resume Trigger Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Approval",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def get_approval(
    token: Annotated[
        str,
        Field(description="Approval token from the pause response", min_length=1, max_length=200),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Show what an approval link is asking for. Required: token."""
    app_ctx = ctx.request_context.lifespan_context
    try:
        return {"success": True, **await app_ctx.coordinator.get_approval(token)}
    except ResumeError as e:
        return _error_response(e)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Approve Execution",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,  # Approval tokens are single use
        openWorldHint=True,
    )
)
async def approve_execution(
    token: Annotated[
        str,
        Field(description="Approval token from the pause response", min_length=1, max_length=200),
    ],
    action: Annotated[
        Literal["approve", "reject"],
        Field(description="approve resumes the workflow, reject stops it"),
    ] = "approve",
    form_data: Annotated[
        dict[str, Any] | None,
        Field(description="Field values for custom humanInputFormat forms"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Approve or reject a human-approval pause. Required: token. Optional: action, form_data."""
    app_ctx = ctx.request_context.lifespan_context
    try:
        return await app_ctx.coordinator.approve(token, action, form_data)
    except ResumeError as e:
        return _error_response(e)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Ask About Approval",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,  # Calls the configured chat model
    )
)
async def chat_about_approval(
    token: Annotated[
        str,
        Field(description="Approval token from the pause response", min_length=1, max_length=200),
    ],
    message: Annotated[
        str,
        Field(description="Question about the content under review", max_length=10000),
    ],
    chat_history: Annotated[
        list[dict[str, Any]] | None,
        Field(description="Previous turns as {role, content}"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Ask the approval assistant about pending content. Required: token, message."""
    app_ctx = ctx.request_context.lifespan_context
    try:
        return await app_ctx.approval_chat.reply(token, message, chat_history)
    except ResumeError as e:
        return _error_response(e)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Resume Execution",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def resume_execution(
    workflow_id: Annotated[
        str,
        Field(description="Workflow of the paused execution", min_length=1, max_length=200),
    ],
    execution_id: Annotated[
        str,
        Field(description="Execution ID of the paused run", min_length=1, max_length=100),
    ],
    payload: Annotated[
        dict[str, Any] | None,
        Field(description="Resume input (validated against apiInputFormat for API waits)"),
    ] = None,
    api_key: Annotated[
        str | None,
        Field(description="API key (when WORKFLOWS_API_KEYS is configured)"),
    ] = None,
    session_token: Annotated[
        str | None,
        Field(description="Session token (when WORKFLOWS_SESSION_TOKENS is configured)"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Resume a paused execution with an input payload. Required: workflow_id, execution_id."""
    app_ctx = ctx.request_context.lifespan_context
    try:
        return await app_ctx.coordinator.resume_api(
            workflow_id,
            execution_id,
            payload,
            api_key=api_key,
            session_token=session_token,
        )
    except ResumeError as e:
        return _error_response(e)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Deliver Webhook",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def resume_webhook(
    workflow_id: Annotated[
        str,
        Field(description="Workflow of the waiting execution", min_length=1, max_length=200),
    ],
    execution_id: Annotated[
        str,
        Field(description="Execution ID of the waiting run", min_length=1, max_length=100),
    ],
    payload: Annotated[
        dict[str, Any] | None,
        Field(description="Webhook body"),
    ] = None,
    secret: Annotated[
        str | None,
        Field(description="Webhook secret (x-sim-secret)"),
    ] = None,
    block_id: Annotated[
        str | None,
        Field(description="Wait block for synchronous waits", max_length=200),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Deliver a webhook to a waiting execution. Required: workflow_id, execution_id."""
    app_ctx = ctx.request_context.lifespan_context
    try:
        return await app_ctx.coordinator.resume_webhook(
            workflow_id, execution_id, payload, secret=secret, block_id=block_id
        )
    except ResumeError as e:
        return _error_response(e)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Cancel Wait",
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def cancel_wait(
    execution_id: Annotated[
        str,
        Field(description="Execution ID of the waiting run", min_length=1, max_length=100),
    ],
    block_id: Annotated[
        str | None,
        Field(description="Wait block to cancel", max_length=200),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Cancel a synchronous wait. Required: execution_id. Optional: block_id."""
    app_ctx = ctx.request_context.lifespan_context
    cancelled = await app_ctx.coordinator.cancel_wait(execution_id, block_id)
    return {
        "executionId": execution_id,
        "blockId": block_id,
        "cancelled": cancelled,
        "message": "Wait cancelled" if cancelled else "No active wait found",
    }


# =============================================================================
# Execution Log Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Execution Log",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def get_execution_log(
    execution_id: Annotated[
        str,
        Field(description="Execution ID", min_length=1, max_length=100),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Get the recorded logs and trace spans of an execution. Required: execution_id."""
    app_ctx = ctx.request_context.lifespan_context
    entry = await app_ctx.log_store.get(execution_id)
    if entry is None:
        return {
            "error": "Execution not found",
            "executionId": execution_id,
            "message": f"No execution log found with ID: {execution_id}",
        }
    return entry


@mcp.tool(
    annotations=ToolAnnotations(
        title="Get Execution Stats",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def get_execution_stats(*, ctx: AppContextType) -> dict[str, Any]:
    """Run counters: total, completed, failed and rejected runs."""
    app_ctx = ctx.request_context.lifespan_context
    return await app_ctx.log_store.get_stats()


__all__ = [
    "approve_execution",
    "cancel_wait",
    "chat_about_approval",
    "execute_workflow",
    "get_approval",
    "get_execution_log",
    "get_execution_stats",
    "get_paused_execution",
    "list_paused_executions",
    "list_workflows",
    "resume_execution",
    "resume_webhook",
]
