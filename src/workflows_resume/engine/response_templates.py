"""Response templates for API-triggered resumes.

An API wait block may declare the body its resume endpoint answers with:

- json mode: apiEditorResponse, a JSON document (or JSON text)
- structured mode: apiBuilderResponse, a list of {name, value} fields
  (or a ready-made object)

Placeholders take the form <namespace.field>. The "api" namespace is the
resume payload; callers may add more (e.g. "execution" with the resume URL).
A string that is exactly one placeholder keeps the value's type.
Unresolvable placeholders are left as written.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"<(\w+)\.(\w+)>")

DEFAULT_MESSAGE = "Workflow resumed successfully"


def resolve_placeholders(value: Any, namespaces: Mapping[str, Mapping[str, Any]]) -> Any:
    """Replace <namespace.field> placeholders recursively."""
    if isinstance(value, dict):
        return {k: resolve_placeholders(v, namespaces) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_placeholders(v, namespaces) for v in value]
    if not isinstance(value, str):
        return value

    whole = PLACEHOLDER_PATTERN.fullmatch(value)
    if whole:
        found, resolved = _lookup(namespaces, whole.group(1), whole.group(2))
        return resolved if found else value

    def replace(match: re.Match[str]) -> str:
        found, resolved = _lookup(namespaces, match.group(1), match.group(2))
        if not found:
            return match.group(0)
        return resolved if isinstance(resolved, str) else json.dumps(resolved)

    return PLACEHOLDER_PATTERN.sub(replace, value)


def _lookup(namespaces: Mapping[str, Mapping[str, Any]], root: str, name: str) -> tuple[bool, Any]:
    namespace = namespaces.get(root)
    if namespace is None or name not in namespace:
        return False, None
    return True, namespace[name]


def _builder_to_object(fields: Any) -> Any:
    if not isinstance(fields, list):
        return fields
    body: dict[str, Any] = {}
    for entry in fields:
        if isinstance(entry, dict) and entry.get("name"):
            value = entry.get("value")
            if entry.get("type") == "object" and isinstance(value, list):
                value = _builder_to_object(value)
            body[entry["name"]] = value
    return body


def render_api_response(
    metadata: Mapping[str, Any],
    resume_input: dict[str, Any],
    extra: Mapping[str, Mapping[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    Build the body returned to an API resume caller.

    Falls back to {"success": true, "message": ..., "data": resume_input}
    when no template is configured, and merges the input into the default
    body when the JSON template cannot be parsed.
    """
    namespaces: dict[str, Mapping[str, Any]] = {**(extra or {}), "api": resume_input}
    default: dict[str, Any] = {"success": True, "message": DEFAULT_MESSAGE}
    mode = metadata.get("apiResponseMode") or "json"

    if mode == "json" and metadata.get("apiEditorResponse"):
        template = metadata["apiEditorResponse"]
        if isinstance(template, str):
            try:
                template = json.loads(template)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid apiEditorResponse template, using default: {e}")
                return {**default, **resume_input}
        return resolve_placeholders(template, namespaces)

    if mode == "structured" and metadata.get("apiBuilderResponse"):
        return resolve_placeholders(_builder_to_object(metadata["apiBuilderResponse"]), namespaces)

    return {**default, "data": resume_input}


__all__ = ["DEFAULT_MESSAGE", "render_api_response", "resolve_placeholders"]
