"""
Resume coordinator: wakes paused executions from external triggers.

Every trigger (human approval, API call, webhook, schedule tick, child
completion) goes through the same steps:

1. Validate the trigger and its payload. Nothing is mutated yet.
2. Consume the pause record (compare-and-set on its token). Exactly one
   caller wins; everyone else gets "already used".
3. Rebuild the context: executed blocks from the stored logs, then the
   active path from the frozen graph.
4. Complete the paused block with the trigger's output and log it.
5. Re-enter the graph executor.
6. Persist: a new pause if the run stopped at another wait block,
   otherwise the final logs, and the pause record is deleted.
7. If the finished execution is a child of a paused workflow block, write
   its result into the parent and resume the parent the same way.

Failures after step 5 never undo the resume: log persistence and the
parent cascade are logged and swallowed. A failed re-pause is fatal
(PausePersistenceError) because the run could not be resumed again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .auth import ResumeAuthenticator
from .context_codec import deserialize_context, serialize_context, serialize_workflow_state
from .exceptions import (
    PausedExecutionNotFoundError,
    RecursionDepthExceededError,
    ResumeAlreadyUsedError,
    ResumeError,
    ResumeForbiddenError,
    ResumeValidationError,
)
from .execution_context import BlockLog, utc_now
from .execution_log import merge_logs
from .execution_result import ExecutionResult
from .graph_executor import GraphExecutor
from .handlers_workflow import child_block_output
from .pause_store import PausedExecution, PauseParams, PauseReceipt, PauseStore
from .reachability import reconcile_executed_blocks, refresh_active_path
from .response_templates import render_api_response
from .resume_triggers import (
    REJECTED_ERROR,
    api_output,
    human_output,
    parse_payload,
    resumed_block_log,
    schedule_output,
    validate_api_input,
    wait_duration_ms,
    webhook_output,
)
from .runtime_context import RuntimeContext
from .schema import WorkflowGraph
from .workflow_runner import WorkflowRunner

logger = logging.getLogger(__name__)

APPROVED_MESSAGE = "Workflow approved and execution resumed successfully."
REJECTED_MESSAGE = "Workflow rejected. Execution stopped."
DEPLOYED_ONLY_MESSAGE = (
    "Webhook resume is only available for deployed workflows. "
    "Use the API resume endpoint for manual executions."
)


@dataclass
class BlockCompletion:
    """Output and log written into the paused block by a trigger."""

    output: dict[str, Any]
    log: BlockLog


@dataclass
class ResumeOutcome:
    """What one resume produced."""

    paused: PausedExecution
    result: ExecutionResult
    new_logs: list[dict[str, Any]]
    merged_logs: list[dict[str, Any]]
    receipt: PauseReceipt | None = None

    def to_response(self) -> dict[str, Any]:
        response = self.result.to_response(logs=self.new_logs)
        response["executionId"] = self.paused.execution_id
        response["workflowId"] = self.paused.workflow_id
        if self.receipt is not None:
            response["pause"] = self.receipt.to_dict()
        return response


class ResumeCoordinator:
    """
    Orchestrates every resume trigger over one pause store.

    Usage:
        coordinator = ResumeCoordinator(runtime)
        details = await coordinator.get_approval(token)
        response = await coordinator.approve(token, "approve", {"content": "ok"})
    """

    def __init__(self, runtime: RuntimeContext, authenticator: ResumeAuthenticator | None = None):
        if runtime.pause_store is None:
            raise ValueError("ResumeCoordinator requires a pause store")
        self.runtime = runtime
        self.pause_store: PauseStore = runtime.pause_store
        self.authenticator = authenticator or ResumeAuthenticator(
            runtime.settings.api_keys, runtime.settings.session_tokens
        )
        self.runner = WorkflowRunner(runtime)

    # =========================================================================
    # Human approval
    # =========================================================================

    async def get_approval(self, token: str) -> dict[str, Any]:
        """Details shown on the approval page. Only human-approval pauses have one."""
        paused = await self._load_by_token(token)
        metadata = paused.metadata
        return {
            "workflowId": paused.workflow_id,
            "executionId": paused.execution_id,
            "pausedAt": paused.paused_at.isoformat(),
            "metadata": {k: v for k, v in metadata.items() if k != "logs"},
            "workflowName": paused.workflow_state.get("name") or "Workflow",
            "humanOperation": metadata.get("humanOperation") or "approval",
            "humanInputFormat": metadata.get("humanInputFormat"),
            "content": metadata.get("content"),
            "description": metadata.get("description"),
        }

    async def approve(
        self, token: str, action: str, form_data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Approve or reject through a one-time approval link.

        Rejection is terminal: the run is logged as failed and the pause
        record deleted without re-entering the graph.

        Raises:
            ResumeValidationError: Invalid action or missing token
            PausedExecutionNotFoundError: Unknown token
            ResumeAlreadyUsedError: Token already consumed
            ResumeForbiddenError: The pause is not waiting for a human approval
        """
        if action not in ("approve", "reject"):
            raise ResumeValidationError('Invalid action. Must be "approve" or "reject"')

        paused = await self._load_by_token(token)
        approved = action == "approve"
        now = utc_now()
        output = human_output(
            paused.metadata,
            self.pause_store.approve_url(token),
            approved,
            form_data,
            wait_duration_ms(paused.paused_at, now),
        )
        completion = self._completion(paused, output, now, "human")

        if not await self.pause_store.mark_approval_used(token):
            raise ResumeAlreadyUsedError()
        logger.info(
            f"Approval action received for {paused.execution_id}: "
            f"{'approved' if approved else 'rejected'}"
        )

        if not approved:
            await self._reject(paused, completion)
            return {
                "success": True,
                "approved": False,
                "workflowResumed": False,
                "workflowCompleted": False,
                "message": REJECTED_MESSAGE,
            }

        outcome = await self._resume(paused, completion)
        return {
            "success": True,
            "approved": True,
            "workflowResumed": True,
            "workflowCompleted": outcome.result.status == "success",
            "message": APPROVED_MESSAGE,
            "executionResult": outcome.to_response(),
        }

    async def _reject(self, paused: PausedExecution, completion: BlockCompletion) -> None:
        try:
            context = deserialize_context(paused.execution_context)
        except Exception:
            await self.pause_store.release(paused.execution_id)
            raise

        completion.log.success = False
        completion.log.error = REJECTED_ERROR
        context.block_logs.append(completion.log)
        logs = merge_logs(paused.logs, context.block_logs)
        result = ExecutionResult.failure(REJECTED_ERROR, context, logs, paused.paused_at)

        await self.runner.record_logs(result, logs=logs)
        if self.runtime.log_store is not None:
            try:
                await self.runtime.log_store.increment_stat("rejected_runs")
            except Exception:
                logger.exception(f"Failed to count rejection of {paused.execution_id}")

        await self.pause_store.delete(paused.execution_id)
        logger.info(f"Execution {paused.execution_id} rejected, execution stopped")

    # =========================================================================
    # API
    # =========================================================================

    async def resume_api(
        self,
        workflow_id: str,
        execution_id: str,
        payload: Any = None,
        *,
        api_key: str | None = None,
        session_token: str | None = None,
    ) -> dict[str, Any]:
        """
        Resume through the authenticated resume endpoint.

        API-triggered pauses validate the payload against the declared
        apiInputFormat before anything is consumed. When the caller used an
        API key the configured response template (if any) is returned
        instead of the execution result.

        Raises:
            ResumeUnauthorizedError: No valid API key or session
            ResumeValidationError: Invalid JSON or missing/mistyped field
            PausedExecutionNotFoundError: No paused execution for this id
            ResumeForbiddenError: Execution is waiting on a child workflow
            ResumeAlreadyUsedError: A concurrent resume won
        """
        auth_kind = self.authenticator.authenticate(api_key=api_key, session_token=session_token)
        paused = await self._load_for_resume(workflow_id, execution_id)
        trigger = paused.resume_trigger_type or "api"

        if trigger == "child":
            raise ResumeForbiddenError(
                f"Execution is waiting on child execution "
                f"{paused.metadata.get('childExecutionId')}; it resumes when the child completes"
            )

        if trigger == "api":
            resume_input = parse_payload(payload)
            validate_api_input(paused.metadata.get("apiInputFormat"), resume_input)
        else:
            resume_input = parse_payload(payload, strict=False)

        now = utc_now()
        output = self._trigger_output(paused, trigger, resume_input, now)
        completion = self._completion(paused, output, now, trigger)
        await self._claim(paused)
        outcome = await self._resume(paused, completion)

        if trigger == "api" and auth_kind == "api":
            return render_api_response(
                paused.metadata,
                resume_input,
                {
                    "execution": {
                        "executionId": execution_id,
                        "workflowId": workflow_id,
                        "resumeUrl": paused.metadata.get("resumeUrl"),
                        "isPaused": outcome.result.is_paused,
                    }
                },
            )
        return outcome.to_response()

    # =========================================================================
    # Webhook
    # =========================================================================

    async def resume_webhook(
        self,
        workflow_id: str,
        execution_id: str,
        payload: Any = None,
        *,
        secret: str | None = None,
        block_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Deliver an inbound webhook.

        A synchronous wait registered on the Wait Registry is woken first,
        after checking the secret against the digest registered with it.
        Otherwise the durable pause record is resumed, which is only allowed
        for deployed executions and requires the block's webhook secret.

        Raises:
            PausedExecutionNotFoundError: Nothing waiting, or the registry wait expired
            ResumeForbiddenError: Execution is not a deployed run, or not a webhook wait
            ResumeUnauthorizedError: Secret missing or wrong
            ResumeAlreadyUsedError: A concurrent resume won
        """
        registry = self.runtime.wait_registry
        if block_id and registry is not None:
            info = await registry.get_wait_info(execution_id, block_id)
            if info is not None and info.workflow_id == workflow_id:
                self.authenticator.verify_webhook_secret_hash(info.secret_hash, secret)
                data = parse_payload(payload, strict=False)
                if not await registry.resume_execution(execution_id, data, block_id):
                    raise PausedExecutionNotFoundError(
                        "Failed to resume execution - wait block may have timed out"
                    )
                logger.info(f"Resume signal sent to {execution_id} at block {block_id}")
                return {
                    "success": True,
                    "message": "Execution resume signal sent",
                    "executionId": execution_id,
                    "blockId": block_id,
                }

        paused = await self._load_for_resume(workflow_id, execution_id)
        if block_id and paused.block_id != block_id:
            raise PausedExecutionNotFoundError(
                f"Execution {execution_id} is not paused at block {block_id}"
            )
        if not paused.is_deployed_context:
            raise ResumeForbiddenError(DEPLOYED_ONLY_MESSAGE)

        trigger_config = paused.metadata.get("triggerConfig") or {}
        if trigger_config.get("type") == "webhook":
            self.authenticator.verify_webhook_secret(trigger_config.get("webhookSecret"), secret)
        if paused.resume_trigger_type != "webhook":
            raise ResumeForbiddenError(
                f"Execution is waiting for a {paused.resume_trigger_type} trigger, not a webhook"
            )

        data = parse_payload(payload, strict=False)
        now = utc_now()
        output = webhook_output(data, wait_duration_ms(paused.paused_at, now))
        completion = self._completion(paused, output, now, "webhook")
        await self._claim(paused)
        outcome = await self._resume(paused, completion)
        return outcome.to_response()

    async def cancel_wait(self, execution_id: str, block_id: str | None = None) -> bool:
        """Cancel a synchronous wait held on the Wait Registry."""
        registry = self.runtime.wait_registry
        if registry is None:
            return False
        return await registry.cancel_wait(execution_id, block_id)

    # =========================================================================
    # Schedule
    # =========================================================================

    async def resume_schedule(self, execution_id: str) -> dict[str, Any]:
        """
        Resume a schedule-triggered pause whose resumeAt has passed.

        Raises:
            PausedExecutionNotFoundError: No paused execution for this id
            ResumeValidationError: Not a schedule wait, or not due yet
            ResumeAlreadyUsedError: Another tick or trigger won
        """
        paused = await self.pause_store.load(execution_id)
        if paused is None:
            raise PausedExecutionNotFoundError("No paused execution found for this ID")
        if paused.resume_trigger_type != "schedule":
            raise ResumeValidationError(
                f"Execution {execution_id} is not waiting on a schedule"
            )

        now = utc_now()
        resume_at = paused.metadata.get("resumeAt")
        if resume_at and datetime.fromisoformat(resume_at) > now:
            raise ResumeValidationError(f"Execution {execution_id} is not due until {resume_at}")

        output = schedule_output(resume_at, wait_duration_ms(paused.paused_at, now))
        completion = self._completion(paused, output, now, "schedule")
        await self._claim(paused)
        outcome = await self._resume(paused, completion)
        return outcome.to_response()

    # =========================================================================
    # Client-side pause submission
    # =========================================================================

    async def pause_from_client(
        self, body: dict[str, Any], *, session_token: str | None = None
    ) -> dict[str, Any]:
        """
        Store a pause produced by an execution that ran outside this server.

        The context may be in pair-list or plain-object form.

        Raises:
            ResumeUnauthorizedError: No valid session
            ResumeValidationError: workflowId, executionId, blockId or context missing
        """
        self.authenticator.authenticate(session_token=session_token)

        workflow_id = body.get("workflowId")
        execution_id = body.get("executionId")
        block_id = body.get("blockId")
        if not workflow_id or not execution_id or not block_id:
            raise ResumeValidationError("Missing required fields: workflowId, executionId, blockId")

        raw_context = body.get("context") or {}
        try:
            context = deserialize_context(
                {"workflowId": workflow_id, "executionId": execution_id, **raw_context}
            )
        except (TypeError, ValueError) as e:
            raise ResumeValidationError(f"Invalid execution context: {e}") from e

        workflow_state = body.get("workflowState") or context.workflow
        if not workflow_state:
            try:
                graph = self.runtime.workflow_registry.get(workflow_id)
            except KeyError as e:
                raise PausedExecutionNotFoundError(f"Workflow not found: {workflow_id}") from e
            workflow_state = serialize_workflow_state(graph)

        try:
            paused_at = _parse_timestamp(body.get("pausedAt")) or utc_now()
        except ValueError as e:
            raise ResumeValidationError(f"Invalid pausedAt: {body.get('pausedAt')}") from e
        trigger = body.get("resumeType") or "human"
        metadata: dict[str, Any] = {
            "blockId": block_id,
            "resumeTriggerType": trigger,
            "triggerType": trigger,
            "pausedAt": paused_at.isoformat(),
            "isDeployedContext": context.is_deployed_context,
            "parentExecutionInfo": context.parent_execution_info,
            "logs": [log.to_dict() for log in context.block_logs],
        }
        for key in (
            "humanOperation",
            "humanInputFormat",
            "apiInputFormat",
            "apiResponseMode",
            "apiBuilderResponse",
            "apiEditorResponse",
        ):
            if body.get(key) is not None:
                metadata[key] = body[key]

        receipt = await self.pause_store.pause(
            PauseParams(
                workflow_id=workflow_id,
                execution_id=execution_id,
                block_id=block_id,
                context=serialize_context(context),
                workflow_state=workflow_state,
                paused_at=paused_at,
                environment_variables=dict(context.environment_variables),
                workflow_input=dict(body.get("workflowInput") or {}),
                metadata=metadata,
            )
        )
        logger.info(f"Stored client pause for {execution_id} at block {block_id}")
        return {"success": True, **receipt.to_dict()}

    # =========================================================================
    # Common resume algorithm
    # =========================================================================

    async def _resume(
        self,
        paused: PausedExecution,
        completion: BlockCompletion | None,
        *,
        chain: list[str] | None = None,
    ) -> ResumeOutcome:
        """
        Re-enter the graph of a consumed pause record.

        Args:
            completion: Output for the paused block; None when the block was
                already completed in the stored context (parent cascade)
            chain: Execution ids of the children that cascaded into this resume
        """
        try:
            context = deserialize_context(paused.execution_context)
            graph = WorkflowGraph.model_validate(paused.workflow_state)
            block_id = paused.block_id

            reconcile_executed_blocks(context, paused.logs)
            refresh_active_path(graph, context, block_id)
            if completion is not None and block_id:
                context.mark_executed(block_id, completion.output, completion.log.duration_ms)
                context.block_logs.append(completion.log)

            pre_resume_blocks = set(context.executed_blocks)
            executor, context = GraphExecutor.create_from_paused_state(
                paused.workflow_state,
                context,
                self.runtime,
                environment_variables=paused.environment_variables,
                workflow_input=paused.workflow_input,
            )
        except Exception:
            logger.exception(f"Failed to prepare resume of {paused.execution_id}")
            await self.pause_store.release(paused.execution_id)
            raise

        result = await executor.resume_from_context(paused.workflow_id, context)

        new_logs = [log for log in result.logs if log.get("blockId") not in pre_resume_blocks]
        if new_logs:
            try:
                await self.pause_store.append_logs(paused.execution_id, new_logs)
            except Exception:
                logger.exception(f"Failed to append resumed logs for {paused.execution_id}")

        merged_logs = merge_logs(paused.logs, result.logs)
        outcome = ResumeOutcome(paused, result, new_logs, merged_logs)

        if result.is_paused:
            outcome.receipt = await self.runner.record_pause(
                result, paused.workflow_input, paused.user_id, repause=True
            )
            await self.runner.record_logs(result, logs=merged_logs, pending=True)
            return outcome

        if result.is_completed:
            await self.runner.record_logs(result, logs=merged_logs)
        await self.pause_store.delete(paused.execution_id)
        logger.info(f"Execution {paused.execution_id} finished after resume: {result.status}")

        if result.status == "success" and paused.parent_execution_info:
            await self._resume_parent(paused, result, merged_logs, chain or [])
        return outcome

    async def _resume_parent(
        self,
        child: PausedExecution,
        result: ExecutionResult,
        logs: list[dict[str, Any]],
        chain: list[str],
    ) -> None:
        """Write a finished child into its parent's workflow block and resume the parent.

        Errors are logged: the child's own completion is what its caller sees.
        """
        info = child.parent_execution_info or {}
        parent_id = info.get("executionId")
        if not parent_id:
            return

        chain = chain + [child.execution_id]
        try:
            max_depth = self.runtime.max_recursion_depth
            if len(chain) > max_depth:
                raise RecursionDepthExceededError(
                    workflow_id=info.get("workflowId") or "",
                    current_depth=len(chain),
                    max_depth=max_depth,
                    workflow_stack=chain,
                )

            parent = await self.pause_store.load(parent_id)
            if parent is None:
                logger.warning(f"Parent execution {parent_id} of {child.execution_id} is not paused")
                return
            if parent.block_id != info.get("blockId"):
                logger.warning(
                    f"Parent execution {parent_id} is paused at {parent.block_id}, "
                    f"not at workflow block {info.get('blockId')}"
                )
                return
            if not await self.pause_store.claim(parent_id):
                logger.info(f"Parent execution {parent_id} is already being resumed")
                return

            completion = self._child_completion(parent, child, result, logs)
            context = deserialize_context(parent.execution_context)
            context.mark_executed(parent.block_id, completion.output, completion.log.duration_ms)
            context.block_logs.append(completion.log)
            await self.pause_store.update_context(
                parent_id, serialize_context(context), {"logs": [completion.log.to_dict()]}
            )

            updated = await self.pause_store.load(parent_id)
            if updated is None:
                logger.warning(f"Parent execution {parent_id} disappeared during cascade")
                return
            logger.info(f"Child {child.execution_id} completed, resuming parent {parent_id}")
            await self._resume(updated, None, chain=chain)
        except Exception:
            logger.exception(f"Failed to resume parent {parent_id} of {child.execution_id}")

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_by_token(self, token: str) -> PausedExecution:
        if not token:
            raise ResumeValidationError("Approval token is required")
        paused = await self.pause_store.load_by_token(token)
        if paused is None:
            if await self.pause_store.token_consumed(token):
                raise ResumeAlreadyUsedError()
            raise PausedExecutionNotFoundError("Invalid or expired approval link")
        if paused.approval_used:
            raise ResumeAlreadyUsedError()
        trigger = paused.resume_trigger_type or "human"
        if trigger != "human":
            raise ResumeForbiddenError(
                f"Execution is waiting for a {trigger} trigger, not an approval"
            )
        return paused

    async def _load_for_resume(self, workflow_id: str, execution_id: str) -> PausedExecution:
        paused = await self.pause_store.load(execution_id)
        if paused is None or paused.workflow_id != workflow_id:
            raise PausedExecutionNotFoundError("No paused execution found for this ID")
        if paused.approval_used:
            raise ResumeAlreadyUsedError("Execution has already been resumed")
        return paused

    async def _claim(self, paused: PausedExecution) -> None:
        if not await self.pause_store.claim(paused.execution_id):
            raise ResumeAlreadyUsedError("Execution has already been resumed")

    def _trigger_output(
        self, paused: PausedExecution, trigger: str, payload: dict[str, Any], now: datetime
    ) -> dict[str, Any]:
        """Output for a manual or API resume of any trigger type."""
        wait_ms = wait_duration_ms(paused.paused_at, now)
        if trigger == "api":
            return api_output(payload, paused.metadata.get("resumeUrl"))
        if trigger == "webhook":
            return webhook_output(payload, wait_ms)
        if trigger == "schedule":
            return schedule_output(paused.metadata.get("resumeAt"), wait_ms)
        if trigger == "human":
            url = self.pause_store.approve_url(paused.approval_token)
            return human_output(paused.metadata, url, True, payload, wait_ms)
        return {**payload, "status": "resumed", "waitDuration": wait_ms}

    def _completion(
        self, paused: PausedExecution, output: dict[str, Any], now: datetime, trigger: str
    ) -> BlockCompletion:
        block_id = paused.block_id
        if not block_id:
            raise ResumeError(f"Pause record of {paused.execution_id} has no blockId")
        block = _frozen_block(paused.workflow_state, block_id)
        log = resumed_block_log(
            block_id=block_id,
            block_name=block.get("name") or paused.metadata.get("blockName") or block_id,
            block_type=block.get("type"),
            paused_at=paused.paused_at,
            now=now,
            trigger=trigger,
            output=output,
        )
        return BlockCompletion(output, log)

    def _child_completion(
        self,
        parent: PausedExecution,
        child: PausedExecution,
        result: ExecutionResult,
        logs: list[dict[str, Any]],
    ) -> BlockCompletion:
        workflow_name = child.workflow_state.get("name") or child.workflow_id
        output = child_block_output(result, workflow_name, logs).to_output()
        now = utc_now()
        log = BlockLog(
            id=f"{parent.block_id}-child-{child.execution_id}",
            block_id=parent.block_id or "",
            block_name=f"{workflow_name} workflow",
            block_type="workflow",
            started_at=parent.paused_at.isoformat(),
            ended_at=now.isoformat(),
            duration_ms=wait_duration_ms(parent.paused_at, now),
            success=result.status == "success",
            input={"workflowId": child.workflow_id},
            output=output,
            error=result.error,
        )
        return BlockCompletion(output, log)


def _frozen_block(workflow_state: dict[str, Any], block_id: str) -> dict[str, Any]:
    for block in workflow_state.get("blocks") or []:
        if isinstance(block, dict) and block.get("id") == block_id:
            return block
    return {}


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


__all__ = ["BlockCompletion", "ResumeCoordinator", "ResumeOutcome"]
