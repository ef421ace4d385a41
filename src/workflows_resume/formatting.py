"""Shared formatting utilities for MCP tool responses.

Markdown renderings for the listing tools; JSON responses are plain dicts
built by the tools themselves.
"""

from typing import Any

from .engine import PausedExecution

# =============================================================================
# Markdown Formatting Utilities
# =============================================================================


def format_workflow_list_markdown(
    workflows: list[dict[str, Any]], tags: list[str] | None = None
) -> str:
    """Format workflow metadata (registry.list_all_metadata()) as markdown."""
    if not workflows:
        tag_msg = f" with tags: {', '.join(tags)}" if tags else ""
        return f"No workflows found{tag_msg}"

    header = f"## Available Workflows ({len(workflows)})"
    if tags:
        header += f"\n**Filtered by tags**: {', '.join(tags)}"

    lines = [header, ""]
    for info in workflows:
        line = f"- **{info['name']}**"
        if info.get("description"):
            line += f": {info['description']}"
        if info.get("wait_blocks"):
            line += f" (waits at: {', '.join(info['wait_blocks'])})"
        lines.append(line)
    return "\n".join(lines)


def format_paused_list_markdown(records: list[PausedExecution]) -> str:
    """Format paused executions as markdown, newest first."""
    if not records:
        return "No paused executions"

    lines = [f"## Paused Executions ({len(records)})", ""]
    for record in records:
        trigger = record.resume_trigger_type or "human"
        lines.append(
            f"- `{record.execution_id}` **{record.workflow_id}** "
            f"at `{record.block_id}` ({trigger}), paused {record.paused_at.isoformat()}"
        )
        if trigger == "schedule" and record.metadata.get("resumeAt"):
            lines.append(f"  - resumes at {record.metadata['resumeAt']}")
        elif record.metadata.get("resumeUrl"):
            lines.append(f"  - resume URL: {record.metadata['resumeUrl']}")
    return "\n".join(lines)


# =============================================================================
# Error Formatting Utilities
# =============================================================================


def format_workflow_not_found_error(workflow_name: str, available: list[str]) -> dict[str, Any]:
    """Build the failure response for an unknown workflow name."""
    return {
        "status": "failure",
        "error": (
            f"Workflow '{workflow_name}' not found. "
            f"Available workflows: {', '.join(available[:5])}"
            f"{' (and more)' if len(available) > 5 else ''}. "
            "Use list_workflows() to see all workflows or filter by tags."
        ),
        "available_workflows": available,
    }


__all__ = [
    "format_paused_list_markdown",
    "format_workflow_list_markdown",
    "format_workflow_not_found_error",
]
