"""
Wait and approval block handlers.

A wait block either finishes on its own (time trigger: sleeps in place,
polling the cancellation token) or suspends the run until something
outside it happens:

- webhook: an inbound POST to the block's resume URL
- api: an authenticated POST carrying fields declared in apiInputFormat
- human: an approval decision submitted through the one-time approval link
- schedule: the resume scheduler, once resumeAt is due

Suspending means: record metadata["waitBlockInfo"], set
context.should_pause_after_block and return the waiting output. The graph
executor stops after the block; the caller persists the pause.

A webhook wait with synchronous: true does not suspend. It holds the
request on the wait registry until a resume signal (or the timeout)
arrives, then continues inline.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import secrets
from datetime import timedelta
from typing import Any, ClassVar, Literal

from pydantic import Field

from .auth import hash_webhook_secret
from .block import BlockInput, BlockOutput
from .execution_context import utc_now
from .executor_base import BlockHandler, BlockRun
from .notifications import NotificationError, NotificationRequest, send_notification
from .references import normalize_block_name
from .wait_registry import WaitInfo

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.1

TIME_UNIT_SECONDS = {"seconds": 1, "minutes": 60, "hours": 3600}

ResumeTriggerType = Literal["time", "webhook", "api", "human", "schedule"]


def webhook_resume_url(base_url: str, workflow_id: str, execution_id: str, block_id: str) -> str:
    return f"{base_url}/api/webhooks/resume/{workflow_id}/{execution_id}/{block_id}"


def api_resume_url(base_url: str, workflow_id: str, execution_id: str) -> str:
    return f"{base_url}/api/workflows/{workflow_id}/executions/resume/{execution_id}"


def approve_url(base_url: str, token: str) -> str:
    return f"{base_url}/approve/{token}"


def parse_mock_response(mock: Any) -> Any:
    """Mock responses may be authored as JSON text."""
    if isinstance(mock, str):
        try:
            return json.loads(mock)
        except json.JSONDecodeError:
            logger.warning("Failed to parse mock response as JSON, using as-is")
    return mock


class InputFieldSpec(BlockInput):
    """One field of a human form or an API resume payload."""

    model_config = BlockInput.model_config | {"extra": "allow"}

    name: str
    type: str = "string"
    required: bool = False
    description: str | None = None


class WaitInput(BlockInput):
    resume_trigger_type: ResumeTriggerType = "time"
    time_value: float = Field(default=10, ge=0)
    time_unit: Literal["seconds", "minutes", "hours"] = "seconds"
    description: str | None = None

    # webhook
    webhook_secret: str | None = None
    synchronous: bool = False
    mock_response: Any = None

    # outbound notification
    webhook_send_url: str | None = None
    webhook_send_method: str = "POST"
    webhook_send_body: Any = None
    webhook_send_headers: dict[str, str] = Field(default_factory=dict)
    webhook_send_params: dict[str, str] = Field(default_factory=dict)

    # human
    human_operation: Literal["approval", "custom", "chat"] = "approval"
    human_input_format: list[InputFieldSpec] = Field(default_factory=list)
    content: Any = None

    # api
    api_input_format: list[InputFieldSpec] = Field(default_factory=list)
    api_response_mode: Literal["json", "structured"] | None = None
    api_editor_response: Any = None
    api_builder_response: Any = None

    @property
    def duration_seconds(self) -> float:
        return self.time_value * TIME_UNIT_SECONDS[self.time_unit]


class WaitOutput(BlockOutput):
    status: str
    trigger_type: str | None = None
    paused_at: str | None = None
    resume_url: str | None = None
    resume_at: str | None = None
    wait_duration: float | None = None
    webhook: Any = None
    notification_sent: bool | None = None


class WaitHandler(BlockHandler):
    """Pauses the workflow until a time, webhook, API, human or schedule trigger fires."""

    type_name: ClassVar[str] = "wait"
    input_type: ClassVar[type[BlockInput]] = WaitInput
    output_type: ClassVar[type[BlockOutput]] = WaitOutput
    resumed_status: ClassVar[str] = "resumed"

    async def execute(self, inputs: WaitInput, run: BlockRun) -> WaitOutput:  # type: ignore[override]
        trigger = inputs.resume_trigger_type
        if trigger == "time":
            return await self._sleep(inputs, run)

        if inputs.mock_response is not None and run.runtime.wait_registry is None:
            logger.info(f"Wait block {run.block.id} using mock response (no wait registry)")
            return WaitOutput(
                status=self.resumed_status, webhook=parse_mock_response(inputs.mock_response) or {}
            )

        if trigger == "webhook" and inputs.synchronous:
            return await self._wait_on_registry(inputs, run)

        return await self._suspend(inputs, run)

    # ------------------------------------------------------------------
    # time
    # ------------------------------------------------------------------

    async def _sleep(self, inputs: WaitInput, run: BlockRun) -> WaitOutput:
        max_sleep = run.runtime.settings.max_sleep_seconds
        seconds = inputs.duration_seconds
        if seconds > max_sleep:
            logger.warning(
                f"Wait block {run.block.id}: {seconds}s exceeds the {max_sleep}s limit, capping"
            )
            seconds = max_sleep

        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + seconds
        while (remaining := deadline - loop.time()) > 0:
            if run.cancellation.is_cancelled:
                elapsed_ms = (loop.time() - started) * 1000
                logger.info(f"Wait block {run.block.id} cancelled after {elapsed_ms:.0f}ms")
                return WaitOutput(status="cancelled", wait_duration=elapsed_ms)
            await asyncio.sleep(min(POLL_INTERVAL_SECONDS, remaining))

        return WaitOutput(status="completed", wait_duration=seconds * 1000)

    # ------------------------------------------------------------------
    # webhook / api / human / schedule
    # ------------------------------------------------------------------

    async def _suspend(self, inputs: WaitInput, run: BlockRun) -> WaitOutput:
        context = run.context
        block = run.block
        trigger = inputs.resume_trigger_type
        base_url = run.runtime.settings.base_url
        paused_at = utc_now()

        info: dict[str, Any] = {
            "blockId": block.id,
            "blockName": block.display_name,
            "pausedAt": paused_at.isoformat(),
            "resumeTriggerType": trigger,
            "triggerConfig": {"type": trigger, "webhookSecret": inputs.webhook_secret},
        }

        resume_url: str | None = None
        resume_at: str | None = None
        if trigger == "webhook":
            resume_url = webhook_resume_url(
                base_url, context.workflow_id, context.execution_id, block.id
            )
        elif trigger == "api":
            resume_url = api_resume_url(base_url, context.workflow_id, context.execution_id)
            info["apiInputFormat"] = [f.model_dump(exclude_none=True) for f in inputs.api_input_format]
            info["apiResponseMode"] = inputs.api_response_mode
            info["apiEditorResponse"] = inputs.api_editor_response
            info["apiBuilderResponse"] = inputs.api_builder_response
        elif trigger == "human":
            # Token is minted here so notifications can carry the approval link
            token = secrets.token_urlsafe(32)
            resume_url = approve_url(base_url, token)
            info["approvalToken"] = token
            info["humanOperation"] = inputs.human_operation
            info["humanInputFormat"] = [
                f.model_dump(exclude_none=True) for f in inputs.human_input_format
            ]
            info["content"] = inputs.content
            info["description"] = inputs.description
        else:
            resume_at = (paused_at + timedelta(seconds=inputs.duration_seconds)).isoformat()
            info["resumeAt"] = resume_at

        info["resumeUrl"] = resume_url
        output = WaitOutput(
            status="waiting",
            trigger_type=trigger,
            paused_at=info["pausedAt"],
            resume_url=resume_url,
            resume_at=resume_at,
        )

        if inputs.webhook_send_url and resume_url:
            output.notification_sent = await self._notify(inputs, run, output)

        context.metadata["waitBlockInfo"] = info
        context.should_pause_after_block = True
        logger.info(
            f"Wait block {block.id} pausing execution {context.execution_id} "
            f"(trigger={trigger})"
        )
        return output

    async def _wait_on_registry(self, inputs: WaitInput, run: BlockRun) -> WaitOutput:
        context = run.context
        block = run.block
        registry = run.runtime.wait_registry
        if registry is None:
            raise RuntimeError(
                "Wait registry not available - cannot hold a synchronous webhook wait. "
                "Add a mockResponse for local testing."
            )

        paused_at = utc_now().isoformat()
        resume_url = webhook_resume_url(
            run.runtime.settings.base_url, context.workflow_id, context.execution_id, block.id
        )
        info = WaitInfo(
            workflow_id=context.workflow_id,
            execution_id=context.execution_id,
            block_id=block.id,
            paused_at=paused_at,
            resume_url=resume_url,
            trigger_type="webhook",
            secret_hash=(
                hash_webhook_secret(inputs.webhook_secret) if inputs.webhook_secret else None
            ),
        )
        # Register before notifying: a fast receiver may resume immediately
        await registry.register(info)

        output = WaitOutput(status="waiting", paused_at=paused_at, resume_url=resume_url)
        if inputs.webhook_send_url:
            await self._notify(inputs, run, output)

        logger.info(f"Wait block {block.id} holding execution {context.execution_id} on registry")
        wait_task = asyncio.create_task(registry.wait_for_resume(info))
        cancel_task = asyncio.create_task(run.cancellation.wait())
        try:
            done, _ = await asyncio.wait(
                {wait_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_task.cancel()
            if not wait_task.done():
                wait_task.cancel()

        if wait_task not in done:
            logger.info(f"Wait block {block.id} cancelled while waiting")
            return WaitOutput(status="cancelled", paused_at=paused_at)

        resume_data = wait_task.result()
        if resume_data is None:
            logger.warning(f"Wait block {block.id} timed out for {context.execution_id}")
            return WaitOutput(status="timeout", paused_at=paused_at)
        if resume_data.get("cancelled"):
            logger.info(f"Wait block {block.id} cancelled via registry")
            return WaitOutput(status="cancelled", paused_at=paused_at)

        return WaitOutput(status=self.resumed_status, paused_at=paused_at, webhook=resume_data)

    # ------------------------------------------------------------------
    # notification
    # ------------------------------------------------------------------

    async def _notify(self, inputs: WaitInput, run: BlockRun, output: WaitOutput) -> bool:
        """Send the outbound notification. Failures are logged; the wait proceeds."""
        names = {normalize_block_name(run.block.display_name), normalize_block_name(run.block.id)}
        values = output.to_output()

        settings = run.runtime.settings
        body = inputs.webhook_send_body
        if isinstance(body, str):
            body = _substitute_self_references(body, names, values, quote=True)
        else:
            body = _substitute_self_references(body, names, values)

        request = NotificationRequest(
            url=_substitute_self_references(inputs.webhook_send_url, names, values),
            method=inputs.webhook_send_method,
            body=body,
            headers=_substitute_self_references(inputs.webhook_send_headers, names, values),
            params=_substitute_self_references(inputs.webhook_send_params, names, values),
        )
        variables = {
            "resumeUrl": output.resume_url or "",
            "workflowId": run.context.workflow_id,
            "executionId": run.context.execution_id,
            "blockId": run.block.id,
        }
        try:
            result = await send_notification(
                request,
                variables,
                max_retries=settings.notification_max_retries,
                initial_delay=settings.notification_initial_delay,
                timeout=settings.notification_timeout,
            )
        except (NotificationError, ValueError) as e:
            logger.error(f"Wait block {run.block.id} notification failed: {e}")
            return False

        if not result.success:
            logger.error(
                f"Wait block {run.block.id} notification rejected: HTTP {result.status_code}"
            )
        return result.success


class UserApprovalInput(WaitInput):
    resume_trigger_type: ResumeTriggerType = "human"


class UserApprovalHandler(WaitHandler):
    """Human approval step: a wait block whose trigger defaults to the approval link."""

    type_name: ClassVar[str] = "user_approval"
    input_type: ClassVar[type[BlockInput]] = UserApprovalInput
    resumed_status: ClassVar[str] = "approved"


def _substitute_self_references(
    value: Any, names: set[str], values: dict[str, Any], quote: bool = False
) -> Any:
    """Replace <blockname.property> references to the wait block itself.

    These cannot be resolved before the block runs (it has no output yet),
    so the executor leaves them intact and they are filled in here. With
    quote=True values are JSON-encoded, for string bodies holding JSON.
    """
    if isinstance(value, dict):
        return {k: _substitute_self_references(v, names, values, quote) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_self_references(v, names, values, quote) for v in value]
    if not isinstance(value, str) or "<" not in value:
        return value

    pattern = re.compile(
        r"<(" + "|".join(re.escape(n) for n in names) + r")\.(\w+)>", re.IGNORECASE
    )
    lowered = {k.lower(): v for k, v in values.items()}

    def replace(match: re.Match[str]) -> str:
        prop = match.group(2).lower()
        if prop not in lowered:
            return match.group(0)
        found = lowered[prop]
        if quote:
            return json.dumps(found)
        return found if isinstance(found, str) else json.dumps(found)

    return pattern.sub(replace, value)


__all__ = [
    "UserApprovalHandler",
    "WaitHandler",
    "WaitInput",
    "WaitOutput",
    "api_resume_url",
    "approve_url",
    "parse_mock_response",
    "webhook_resume_url",
]
