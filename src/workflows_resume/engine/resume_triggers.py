"""
Trigger payloads: validation and the output they give the paused block.

Pure functions, no I/O. The ResumeCoordinator calls them before touching
any state, so a rejected payload never mutates a paused execution.

Output shapes written into the paused block:

- human, approval mode: {approved, content?, approveUrl, waitDuration}
- human, custom mode:   every form field, plus approveUrl and waitDuration
- human, chat mode:     {chat?, content?, approveUrl, waitDuration}
- api:                  the payload fields plus resumeUrl
- webhook:              {webhook: payload, status: "resumed"}
- schedule:             {status: "completed", resumeAt, waitDuration}
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import jsonschema

from .exceptions import ResumeValidationError
from .execution_context import BlockLog

# Wait block input format types that map onto JSON schema types
FIELD_SCHEMA_TYPES = {
    "string": "string",
    "number": "number",
    "integer": "integer",
    "boolean": "boolean",
    "object": "object",
    "array": "array",
}

REJECTED_ERROR = "Workflow rejected by user"


def parse_payload(payload: Any, *, strict: bool = True) -> dict[str, Any]:
    """
    Normalize a resume payload to a dict.

    Accepts a dict, JSON text or bytes, or None (empty payload).

    Args:
        strict: Reject text that is not a JSON object; otherwise wrap it
            as {"body": text}

    Raises:
        ResumeValidationError: Invalid JSON payload (strict mode)
    """
    if payload is None or payload == "" or payload == b"":
        return {}
    if isinstance(payload, Mapping):
        return dict(payload)

    text = payload.decode(errors="replace") if isinstance(payload, bytes) else str(payload)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        if strict:
            raise ResumeValidationError("Invalid JSON payload") from None
        return {"body": text}

    if isinstance(parsed, dict):
        return parsed
    if strict:
        raise ResumeValidationError("Invalid JSON payload")
    return {"body": parsed}


def input_format_schema(fields: list[Mapping[str, Any]]) -> dict[str, Any]:
    """JSON schema for the typed fields of an apiInputFormat."""
    properties = {}
    for field in fields:
        schema_type = FIELD_SCHEMA_TYPES.get(str(field.get("type", "")).lower())
        if field.get("name") and schema_type:
            properties[field["name"]] = {"type": schema_type}
    return {"type": "object", "properties": properties}


def validate_api_input(fields: Any, payload: Mapping[str, Any]) -> None:
    """
    Check an API resume payload against the wait block's declared input format.

    Required fields are checked first, in declaration order, then field types.

    Raises:
        ResumeValidationError: "Missing required field: <name>" or a type mismatch
    """
    if not isinstance(fields, list) or not fields:
        return

    for field in fields:
        if isinstance(field, Mapping) and field.get("required") and field.get("name") not in payload:
            raise ResumeValidationError(f"Missing required field: {field.get('name')}")

    schema = input_format_schema([f for f in fields if isinstance(f, Mapping)])
    try:
        jsonschema.validate(instance=dict(payload), schema=schema)
    except jsonschema.ValidationError as e:
        name = ".".join(str(part) for part in e.absolute_path) or "payload"
        raise ResumeValidationError(f"Invalid value for field '{name}': {e.message}") from e


def wait_duration_ms(paused_at: datetime, now: datetime) -> float:
    return max(0.0, (now - paused_at).total_seconds() * 1000)


def human_output(
    metadata: Mapping[str, Any],
    approve_url: str,
    approved: bool,
    form_data: Mapping[str, Any] | None,
    wait_ms: float,
) -> dict[str, Any]:
    """Output of a human approval block for the chosen action."""
    form_data = form_data or {}
    operation = metadata.get("humanOperation") or "approval"
    output: dict[str, Any] = {"approveUrl": approve_url, "waitDuration": wait_ms}

    if operation == "approval":
        output["approved"] = approved
        if form_data.get("content"):
            output["content"] = form_data["content"]
    elif operation == "custom":
        output.update(form_data)
    elif operation == "chat":
        if form_data.get("chat"):
            output["chat"] = form_data["chat"]
        if form_data.get("content"):
            output["content"] = form_data["content"]
    return output


def api_output(payload: Mapping[str, Any], resume_url: str | None) -> dict[str, Any]:
    output = dict(payload)
    if resume_url:
        output["resumeUrl"] = resume_url
    return output


def webhook_output(payload: Mapping[str, Any], wait_ms: float) -> dict[str, Any]:
    return {"webhook": dict(payload), "status": "resumed", "waitDuration": wait_ms}


def schedule_output(resume_at: str | None, wait_ms: float) -> dict[str, Any]:
    output: dict[str, Any] = {"status": "completed", "waitDuration": wait_ms}
    if resume_at:
        output["resumeAt"] = resume_at
    return output


def resumed_block_log(
    *,
    block_id: str,
    block_name: str | None,
    block_type: str | None,
    paused_at: datetime,
    now: datetime,
    trigger: str,
    output: dict[str, Any],
    success: bool = True,
    error: str | None = None,
) -> BlockLog:
    """Log entry for a wait block completed by a resume trigger."""
    return BlockLog(
        id=f"{block_id}-resume-{int(now.timestamp() * 1000)}",
        block_id=block_id,
        block_name=block_name,
        block_type=block_type,
        started_at=paused_at.isoformat(),
        ended_at=now.isoformat(),
        duration_ms=wait_duration_ms(paused_at, now),
        success=success,
        input={"resumeTriggerType": trigger},
        output=output,
        error=error,
    )


__all__ = [
    "REJECTED_ERROR",
    "api_output",
    "human_output",
    "input_format_schema",
    "parse_payload",
    "resumed_block_log",
    "schedule_output",
    "validate_api_input",
    "wait_duration_ms",
    "webhook_output",
]
