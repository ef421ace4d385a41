"""Outbound notification webhooks sent by wait blocks.

A wait block can tell an external system where to resume it: the request
body, headers and query params are rendered with the resume URL and the
execution identity, then sent with exponential-backoff retries.

Template variables (jinja2, sandboxed, strict):
    {{resumeUrl}}, {{workflowId}}, {{executionId}}, {{blockId}}
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from jinja2 import StrictUndefined
from jinja2.exceptions import TemplateError
from jinja2.sandbox import SandboxedEnvironment

logger = logging.getLogger(__name__)

_env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)


class NotificationError(Exception):
    """Notification could not be delivered after all retries."""


@dataclass
class NotificationRequest:
    url: str
    method: str = "POST"
    body: str | dict[str, Any] | list[Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


@dataclass
class NotificationResult:
    status_code: int
    attempts: int
    response_body: str = ""

    @property
    def success(self) -> bool:
        return 200 <= self.status_code < 300


def render_template_value(value: Any, variables: dict[str, Any]) -> Any:
    """Render jinja2 expressions in strings, recursively through dicts and lists."""
    if isinstance(value, str):
        if "{{" not in value and "{%" not in value:
            return value
        try:
            return _env.from_string(value).render(**variables)
        except TemplateError as e:
            raise ValueError(f"Invalid notification template {value!r}: {e}") from e
    if isinstance(value, dict):
        return {k: render_template_value(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [render_template_value(v, variables) for v in value]
    return value


def is_retryable(status_code: int | None) -> bool:
    """Retry transport failures (no status), rate limits and server errors."""
    return status_code is None or status_code == 429 or status_code >= 500


async def send_notification(
    request: NotificationRequest,
    variables: dict[str, Any],
    *,
    max_retries: int = 5,
    initial_delay: float = 5.0,
    timeout: float = 30.0,
) -> NotificationResult:
    """
    Render and send a notification webhook.

    Delays double after every retryable failure (initial_delay, 2x, 4x, ...).
    Non-retryable 4xx responses are returned immediately.

    Raises:
        NotificationError: If every attempt failed with a retryable error
        ValueError: If a template does not render
    """
    url = render_template_value(request.url, variables)
    headers = {k: str(v) for k, v in render_template_value(request.headers, variables).items()}
    params = render_template_value(request.params, variables)
    body = render_template_value(request.body, variables)

    content: str | None = None
    json_body: Any = None
    if isinstance(body, str):
        try:
            json_body = json.loads(body)
        except json.JSONDecodeError:
            content = body
    else:
        json_body = body

    last_error = ""
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for attempt in range(max_retries + 1):
            status_code: int | None = None
            try:
                response = await client.request(
                    request.method.upper(),
                    url,
                    headers=headers,
                    params=params or None,
                    json=json_body if content is None else None,
                    content=content,
                )
                status_code = response.status_code
                if not is_retryable(status_code):
                    logger.info(f"Notification sent to {url}: HTTP {status_code}")
                    return NotificationResult(status_code, attempt + 1, response.text)
                last_error = f"HTTP {status_code}: {response.text[:200]}"
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < max_retries:
                delay = initial_delay * (2**attempt)
                logger.warning(
                    f"Notification to {url} failed ({last_error}), "
                    f"retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    raise NotificationError(
        f"Notification to {url} failed after {max_retries + 1} attempts: {last_error}"
    )


__all__ = [
    "NotificationError",
    "NotificationRequest",
    "NotificationResult",
    "is_retryable",
    "render_template_value",
    "send_notification",
]
