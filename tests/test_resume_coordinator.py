"""Tests for ResumeCoordinator: every resume trigger, end to end.

Each test starts a real run through WorkflowRunner (pause records land in
the in-memory pause store, logs in a temporary SQLite log store) and then
drives the coordinator the way the HTTP routes and MCP tools do.
"""

import asyncio
from typing import Any

import pytest
from test_utils import api_graph, block_ids, schedule_graph, webhook_graph

from workflows_resume.engine import (
    ExecutionContext,
    ExecutionLogStore,
    GraphExecutor,
    InMemoryPauseStore,
    InMemoryWaitRegistry,
    PauseParams,
    PausedExecutionNotFoundError,
    ResumeAlreadyUsedError,
    ResumeAuthenticator,
    ResumeCoordinator,
    ResumeError,
    ResumeForbiddenError,
    ResumeUnauthorizedError,
    ResumeValidationError,
    RuntimeContext,
    WorkflowRegistry,
    WorkflowRunner,
)
from workflows_resume.engine.resume_coordinator import APPROVED_MESSAGE, DEPLOYED_ONLY_MESSAGE


async def start(
    runner: WorkflowRunner,
    registry: WorkflowRegistry,
    name: str,
    workflow_input: dict[str, Any] | None = None,
    **kwargs: Any,
) -> Any:
    """Run a registered workflow and return the WorkflowRun."""
    return await runner.run(registry.get(name), workflow_input, **kwargs)


class TestHumanApproval:
    async def test_get_approval_details(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 42})

        details = await coordinator.get_approval(run.receipt.approval_token)

        assert details["workflowId"] == "expense-approval"
        assert details["executionId"] == run.execution_id
        assert details["workflowName"] == "expense-approval"
        assert details["humanOperation"] == "approval"
        assert details["content"] == "Approve expense of 42?"
        assert "logs" not in details["metadata"]

    async def test_approve_completes_run(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
        log_store: ExecutionLogStore,
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 42})

        response = await coordinator.approve(run.receipt.approval_token, "approve")

        assert response["success"] is True
        assert response["approved"] is True
        assert response["workflowResumed"] is True
        assert response["workflowCompleted"] is True
        assert response["message"] == APPROVED_MESSAGE
        execution = response["executionResult"]
        assert execution["output"] == {"approved": True, "amount": 42}
        assert execution["executionId"] == run.execution_id
        assert block_ids(execution["logs"]) == ["book"]
        assert await pause_store.load(run.execution_id) is None

        row = await log_store.get(run.execution_id)
        assert row is not None
        assert row["status"] == "completed"
        assert block_ids(row["logs"]) == ["start", "approve", "book"]
        stats = await log_store.get_stats()
        assert stats["total_runs"] == 1
        assert stats["completed_runs"] == 1

    async def test_resumed_block_log(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator,
        log_store: ExecutionLogStore,
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 42})

        await coordinator.approve(run.receipt.approval_token, "approve", {"content": "looks fine"})

        row = await log_store.get(run.execution_id)
        assert row is not None
        approve_log = next(log for log in row["logs"] if log["blockId"] == "approve")
        assert approve_log["id"].startswith("approve-resume-")
        assert approve_log["blockName"] == "Manager Approval"
        assert approve_log["input"] == {"resumeTriggerType": "human"}
        assert approve_log["output"]["approved"] is True
        assert approve_log["output"]["content"] == "looks fine"

    async def test_approval_resumes_exactly_once(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 42})
        token = run.receipt.approval_token
        resumes: list[str] = []
        original = GraphExecutor.resume_from_context

        async def counting(self: GraphExecutor, workflow_id: str, context: ExecutionContext) -> Any:
            resumes.append(context.execution_id)
            return await original(self, workflow_id, context)

        monkeypatch.setattr(GraphExecutor, "resume_from_context", counting)

        outcomes = await asyncio.gather(
            coordinator.approve(token, "approve"),
            coordinator.approve(token, "approve"),
            return_exceptions=True,
        )

        successes = [o for o in outcomes if isinstance(o, dict)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], ResumeAlreadyUsedError)
        assert resumes == [run.execution_id]

    async def test_replayed_link_is_already_used(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 42})
        token = run.receipt.approval_token
        await coordinator.approve(token, "approve")

        with pytest.raises(ResumeAlreadyUsedError) as exc_info:
            await coordinator.approve(token, "approve")

        assert exc_info.value.status_code == 410
        assert exc_info.value.to_response() == {
            "success": False,
            "error": "This approval link has already been used",
            "alreadyUsed": True,
        }
        with pytest.raises(ResumeAlreadyUsedError):
            await coordinator.get_approval(token)

    async def test_reject_stops_execution(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
        log_store: ExecutionLogStore,
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 42})
        token = run.receipt.approval_token

        response = await coordinator.approve(token, "reject")

        assert response == {
            "success": True,
            "approved": False,
            "workflowResumed": False,
            "workflowCompleted": False,
            "message": "Workflow rejected. Execution stopped.",
        }
        assert await pause_store.load(run.execution_id) is None
        row = await log_store.get(run.execution_id)
        assert row is not None
        assert row["status"] == "failed"
        assert row["error"] == "Workflow rejected by user"
        assert "book" not in block_ids(row["logs"])
        stats = await log_store.get_stats()
        assert stats["rejected_runs"] == 1
        assert stats["failed_runs"] == 1

        with pytest.raises(ResumeAlreadyUsedError):
            await coordinator.approve(token, "approve")

    @pytest.mark.parametrize(
        ("token", "action", "error", "message"),
        [
            ("any", "maybe", ResumeValidationError, 'Invalid action. Must be "approve" or "reject"'),
            ("", "approve", ResumeValidationError, "Approval token is required"),
            ("unknown-token", "approve", PausedExecutionNotFoundError, "Invalid or expired approval link"),
        ],
    )
    async def test_invalid_requests(
        self,
        coordinator: ResumeCoordinator,
        token: str,
        action: str,
        error: type[Exception],
        message: str,
    ) -> None:
        with pytest.raises(error) as exc_info:
            await coordinator.approve(token, action)

        assert exc_info.value.message == message  # type: ignore[attr-defined]

    async def test_branch_decision_survives_pause(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        log_store: ExecutionLogStore,
    ) -> None:
        run = await start(runner, registry, "branching-approval", {"amount": 500})

        response = await coordinator.approve(run.receipt.approval_token, "approve")

        assert response["executionResult"]["output"] == {"value": "booked"}
        row = await log_store.get(run.execution_id)
        assert row is not None
        assert block_ids(row["logs"]) == ["start", "check", "approve", "book"]

    async def test_failure_after_approval(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
        log_store: ExecutionLogStore,
    ) -> None:
        run = await start(runner, registry, "fail-after-approval")

        response = await coordinator.approve(run.receipt.approval_token, "approve")

        assert response["workflowResumed"] is True
        assert response["workflowCompleted"] is False
        assert response["executionResult"]["success"] is False
        assert response["executionResult"]["error"] == "Block 'boom' failed: downstream exploded"
        assert await pause_store.load(run.execution_id) is None
        row = await log_store.get(run.execution_id)
        assert row is not None
        assert row["status"] == "failed"


class TestApprovalLinkScope:
    async def test_api_pause_rejects_approval_link(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        run = await start(runner, registry, "api-resume")
        token = run.receipt.approval_token

        with pytest.raises(ResumeForbiddenError):
            await coordinator.approve(token, "approve")
        with pytest.raises(ResumeForbiddenError):
            await coordinator.get_approval(token)

        record = await pause_store.load(run.execution_id)
        assert record is not None
        assert record.approval_used is False
        with pytest.raises(ResumeValidationError):
            await coordinator.resume_api("api-resume", run.execution_id, {})
        response = await coordinator.resume_api("api-resume", run.execution_id, {"amount": 4})
        assert response["output"] == {"value": 4}

    async def test_parent_waiting_on_child_rejects_approval_link(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        parent_run = await start(runner, registry, "approval-parent", {"amount": 7})
        parent = await pause_store.load(parent_run.execution_id)
        assert parent is not None

        with pytest.raises(ResumeForbiddenError):
            await coordinator.approve(parent.approval_token, "approve")

        child = await pause_store.load(parent.metadata["childExecutionId"])
        assert child is not None
        response = await coordinator.approve(child.approval_token, "approve")

        assert response["workflowCompleted"] is True
        assert await pause_store.load(parent_run.execution_id) is None

    async def test_record_without_block_keeps_token(
        self, coordinator: ResumeCoordinator, pause_store: InMemoryPauseStore
    ) -> None:
        receipt = await pause_store.pause(
            PauseParams(
                workflow_id="expense-approval",
                execution_id="exec-no-block",
                block_id="",
                context={"executionId": "exec-no-block", "workflowId": "expense-approval"},
                workflow_state={"name": "expense-approval", "blocks": [], "edges": []},
                metadata={"resumeTriggerType": "human"},
            )
        )

        with pytest.raises(ResumeError) as exc_info:
            await coordinator.approve(receipt.approval_token, "approve")

        assert exc_info.value.status_code == 500
        record = await pause_store.load("exec-no-block")
        assert record is not None
        assert record.approval_used is False
        assert await pause_store.token_consumed(receipt.approval_token) is False


class TestApiResume:
    async def test_missing_field_leaves_record_resumable(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        run = await start(runner, registry, "api-resume")

        with pytest.raises(ResumeValidationError, match="Missing required field: amount"):
            await coordinator.resume_api("api-resume", run.execution_id, {"note": "hi"})

        record = await pause_store.load(run.execution_id)
        assert record is not None
        assert record.approval_used is False

    async def test_wrong_type_is_rejected(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "api-resume")

        with pytest.raises(ResumeValidationError, match="Invalid value for field 'amount'"):
            await coordinator.resume_api("api-resume", run.execution_id, {"amount": "lots"})

    async def test_invalid_json(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "api-resume")

        with pytest.raises(ResumeValidationError, match="Invalid JSON payload"):
            await coordinator.resume_api("api-resume", run.execution_id, b"{not json")

    async def test_resume_with_payload(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        run = await start(runner, registry, "api-resume")

        response = await coordinator.resume_api(
            "api-resume", run.execution_id, b'{"amount": 42, "note": "ok"}'
        )

        assert response["success"] is True
        assert response["isPaused"] is False
        assert response["output"] == {"value": 42}
        assert response["workflowId"] == "api-resume"
        assert block_ids(response["logs"]) == ["record"]
        assert await pause_store.load(run.execution_id) is None

    async def test_unknown_execution(self, coordinator: ResumeCoordinator) -> None:
        with pytest.raises(PausedExecutionNotFoundError, match="No paused execution found for this ID"):
            await coordinator.resume_api("api-resume", "missing", {"amount": 1})

    async def test_workflow_mismatch_is_not_found(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "api-resume")

        with pytest.raises(PausedExecutionNotFoundError):
            await coordinator.resume_api("expense-approval", run.execution_id, {"amount": 1})

    async def test_second_resume_is_already_used(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        run = await start(runner, registry, "api-resume")
        await pause_store.claim(run.execution_id)

        with pytest.raises(ResumeAlreadyUsedError):
            await coordinator.resume_api("api-resume", run.execution_id, {"amount": 1})

    async def test_api_key_gets_default_response(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "api-resume")

        response = await coordinator.resume_api(
            "api-resume", run.execution_id, {"amount": 42}, api_key="any-key"
        )

        assert response == {
            "success": True,
            "message": "Workflow resumed successfully",
            "data": {"amount": 42},
        }

    async def test_api_key_gets_json_template(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        registry.register(
            api_graph(
                "api-templated",
                {
                    "apiResponseMode": "json",
                    "apiEditorResponse": {
                        "received": "<api.amount>",
                        "execution": "<execution.executionId>",
                        "summary": "Got <api.amount> units",
                    },
                },
            )
        )
        run = await start(runner, registry, "api-templated")

        response = await coordinator.resume_api(
            "api-templated", run.execution_id, {"amount": 42}, api_key="any-key"
        )

        assert response == {
            "received": 42,
            "execution": run.execution_id,
            "summary": "Got 42 units",
        }

    async def test_api_key_gets_structured_template(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        registry.register(
            api_graph(
                "api-structured",
                {
                    "apiResponseMode": "structured",
                    "apiBuilderResponse": [
                        {"name": "ok", "value": True},
                        {
                            "name": "details",
                            "type": "object",
                            "value": [{"name": "amount", "value": "<api.amount>"}],
                        },
                    ],
                },
            )
        )
        run = await start(runner, registry, "api-structured")

        response = await coordinator.resume_api(
            "api-structured", run.execution_id, {"amount": 7}, api_key="any-key"
        )

        assert response == {"ok": True, "details": {"amount": 7}}

    async def test_configured_keys_are_enforced(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, runtime: RuntimeContext
    ) -> None:
        coordinator = ResumeCoordinator(runtime, ResumeAuthenticator(api_keys=["key-1"]))
        run = await start(runner, registry, "api-resume")

        with pytest.raises(ResumeUnauthorizedError):
            await coordinator.resume_api("api-resume", run.execution_id, {"amount": 1}, api_key="bad")
        with pytest.raises(ResumeUnauthorizedError):
            await coordinator.resume_api("api-resume", run.execution_id, {"amount": 1})

        response = await coordinator.resume_api(
            "api-resume", run.execution_id, {"amount": 1}, api_key="key-1"
        )
        assert response["data"] == {"amount": 1}

    async def test_manual_resume_of_human_wait(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 9})

        response = await coordinator.resume_api("expense-approval", run.execution_id, None)

        assert response["output"] == {"approved": True, "amount": 9}


class TestRepause:
    async def test_second_wait_issues_new_token(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
        log_store: ExecutionLogStore,
    ) -> None:
        run = await start(runner, registry, "two-waits")
        first_token = run.receipt.approval_token

        response = await coordinator.resume_api("two-waits", run.execution_id, {"step": 1})

        assert response["isPaused"] is True
        new_token = response["pause"]["approvalToken"]
        assert new_token != first_token
        record = await pause_store.load(run.execution_id)
        assert record is not None
        assert record.block_id == "second"
        assert record.resume_trigger_type == "human"
        assert record.approval_used is False
        assert record.approval_token == new_token
        row = await log_store.get(run.execution_id)
        assert row is not None
        assert row["status"] == "pending"

        final = await coordinator.approve(new_token, "approve")

        assert final["workflowCompleted"] is True
        assert final["executionResult"]["output"] == {"value": True}
        assert await pause_store.load(run.execution_id) is None
        row = await log_store.get(run.execution_id)
        assert row is not None
        assert block_ids(row["logs"]) == ["start", "first", "second", "done"]


class TestWebhookResume:
    async def test_deployed_webhook_resume(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(
            runner, registry, "webhook-callback", execution_id="exec-wh", is_deployed_context=True
        )

        response = await coordinator.resume_webhook(
            "webhook-callback", "exec-wh", b'{"event": "paid"}', secret="s3cret", block_id="hook"
        )

        assert run.result.is_paused
        assert response["success"] is True
        assert response["output"] == {"value": {"event": "paid"}}

    async def test_non_json_body_is_wrapped(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        await start(
            runner, registry, "webhook-callback", execution_id="exec-wh", is_deployed_context=True
        )

        response = await coordinator.resume_webhook(
            "webhook-callback", "exec-wh", b"plain text", secret="s3cret"
        )

        assert response["output"] == {"value": {"body": "plain text"}}

    async def test_manual_execution_is_forbidden(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        await start(runner, registry, "webhook-callback", execution_id="exec-wh")

        with pytest.raises(ResumeForbiddenError) as exc_info:
            await coordinator.resume_webhook("webhook-callback", "exec-wh", {}, secret="s3cret")

        assert exc_info.value.message == DEPLOYED_ONLY_MESSAGE

    @pytest.mark.parametrize(
        ("secret", "message"),
        [
            (None, "Unauthorized - Missing authentication"),
            ("wrong", "Unauthorized - Invalid secret"),
        ],
    )
    async def test_secret_is_checked(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
        secret: str | None,
        message: str,
    ) -> None:
        await start(
            runner, registry, "webhook-callback", execution_id="exec-wh", is_deployed_context=True
        )

        with pytest.raises(ResumeUnauthorizedError) as exc_info:
            await coordinator.resume_webhook("webhook-callback", "exec-wh", {}, secret=secret)

        assert exc_info.value.message == message
        record = await pause_store.load("exec-wh")
        assert record is not None
        assert record.approval_used is False

    async def test_block_mismatch(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        await start(
            runner, registry, "webhook-callback", execution_id="exec-wh", is_deployed_context=True
        )

        with pytest.raises(PausedExecutionNotFoundError):
            await coordinator.resume_webhook(
                "webhook-callback", "exec-wh", {}, secret="s3cret", block_id="other"
            )

    async def test_non_webhook_wait_is_forbidden(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        await start(
            runner, registry, "expense-approval", {"amount": 1},
            execution_id="exec-human", is_deployed_context=True,
        )

        with pytest.raises(ResumeForbiddenError):
            await coordinator.resume_webhook("expense-approval", "exec-human", {})


class TestSynchronousWebhook:
    async def _wait_until_registered(
        self, registry: InMemoryWaitRegistry, execution_id: str
    ) -> None:
        for _ in range(200):
            if await registry.get_wait_info(execution_id, "hook") is not None:
                return
            await asyncio.sleep(0.01)
        raise AssertionError(f"{execution_id} never registered a wait")

    async def test_resume_signal_wakes_waiter(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        wait_registry: InMemoryWaitRegistry,
    ) -> None:
        task = asyncio.create_task(start(runner, registry, "webhook-sync", execution_id="exec-sync"))
        await self._wait_until_registered(wait_registry, "exec-sync")

        response = await coordinator.resume_webhook(
            "webhook-sync", "exec-sync", {"event": "ping"}, block_id="hook"
        )
        run = await asyncio.wait_for(task, timeout=5)

        assert response == {
            "success": True,
            "message": "Execution resume signal sent",
            "executionId": "exec-sync",
            "blockId": "hook",
        }
        assert run.result.status == "success"
        assert run.result.output == {"value": {"event": "ping"}}

        with pytest.raises(PausedExecutionNotFoundError):
            await coordinator.resume_webhook(
                "webhook-sync", "exec-sync", {"event": "again"}, block_id="hook"
            )

    async def test_registry_wake_requires_secret(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        wait_registry: InMemoryWaitRegistry,
    ) -> None:
        registry.register(webhook_graph("webhook-sync-signed", secret="s3cret", synchronous=True))
        task = asyncio.create_task(
            start(runner, registry, "webhook-sync-signed", execution_id="exec-signed")
        )
        await self._wait_until_registered(wait_registry, "exec-signed")

        with pytest.raises(ResumeUnauthorizedError) as missing:
            await coordinator.resume_webhook(
                "webhook-sync-signed", "exec-signed", {"event": "forged"}, block_id="hook"
            )
        with pytest.raises(ResumeUnauthorizedError) as wrong:
            await coordinator.resume_webhook(
                "webhook-sync-signed",
                "exec-signed",
                {"event": "forged"},
                secret="guess",
                block_id="hook",
            )
        assert not task.done()

        response = await coordinator.resume_webhook(
            "webhook-sync-signed",
            "exec-signed",
            {"event": "ping"},
            secret="s3cret",
            block_id="hook",
        )
        run = await asyncio.wait_for(task, timeout=5)

        assert missing.value.message == "Unauthorized - Missing authentication"
        assert wrong.value.message == "Unauthorized - Invalid secret"
        assert response["success"] is True
        assert run.result.output == {"value": {"event": "ping"}}

    async def test_cancel_wait(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        wait_registry: InMemoryWaitRegistry,
    ) -> None:
        task = asyncio.create_task(start(runner, registry, "webhook-sync", execution_id="exec-cancel"))
        await self._wait_until_registered(wait_registry, "exec-cancel")

        assert await coordinator.cancel_wait("exec-cancel", "hook") is True
        run = await asyncio.wait_for(task, timeout=5)

        assert run.result.context.block_states["hook"].output["status"] == "cancelled"
        assert await coordinator.cancel_wait("exec-cancel", "hook") is False

    async def test_wait_times_out(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, runtime: RuntimeContext
    ) -> None:
        runtime.wait_registry = InMemoryWaitRegistry(timeout=0.05)

        run = await start(runner, registry, "webhook-sync")

        assert run.result.status == "success"
        assert run.result.context.block_states["hook"].output["status"] == "timeout"


class TestScheduleResume:
    async def test_not_due_yet(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "scheduled-followup")

        with pytest.raises(ResumeValidationError, match="not due until"):
            await coordinator.resume_schedule(run.execution_id)

    async def test_due_schedule_resumes(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        registry.register(schedule_graph("due-now", seconds=0))
        run = await start(runner, registry, "due-now")

        response = await coordinator.resume_schedule(run.execution_id)

        assert response["output"] == {"value": "completed"}

    async def test_not_a_schedule_wait(
        self, runner: WorkflowRunner, registry: WorkflowRegistry, coordinator: ResumeCoordinator
    ) -> None:
        run = await start(runner, registry, "expense-approval", {"amount": 1})

        with pytest.raises(ResumeValidationError, match="not waiting on a schedule"):
            await coordinator.resume_schedule(run.execution_id)

    async def test_unknown_execution(self, coordinator: ResumeCoordinator) -> None:
        with pytest.raises(PausedExecutionNotFoundError):
            await coordinator.resume_schedule("missing")


class TestChildWorkflowCascade:
    async def test_child_approval_resumes_parent(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
        log_store: ExecutionLogStore,
    ) -> None:
        parent_run = await start(runner, registry, "approval-parent", {"amount": 7})
        parent = await pause_store.load(parent_run.execution_id)
        assert parent is not None
        assert parent.resume_trigger_type == "child"
        child = await pause_store.load(parent.metadata["childExecutionId"])
        assert child is not None
        assert child.parent_execution_info == {
            "workflowId": "approval-parent",
            "executionId": parent_run.execution_id,
            "blockId": "child",
        }

        response = await coordinator.approve(child.approval_token, "approve")

        assert response["workflowCompleted"] is True
        assert await pause_store.load(child.execution_id) is None
        assert await pause_store.load(parent_run.execution_id) is None
        row = await log_store.get(parent_run.execution_id)
        assert row is not None
        assert row["status"] == "completed"
        assert row["final_output"] == {"value": {"approved": True, "amount": 7}}
        assert "summary" in block_ids(row["logs"])

    async def test_parent_cannot_be_resumed_directly(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        parent_run = await start(runner, registry, "approval-parent", {"amount": 7})

        with pytest.raises(ResumeForbiddenError):
            await coordinator.resume_api("approval-parent", parent_run.execution_id, {})

        parent = await pause_store.load(parent_run.execution_id)
        assert parent is not None
        assert parent.approval_used is False

    async def test_rejected_child_leaves_parent_paused(
        self,
        runner: WorkflowRunner,
        registry: WorkflowRegistry,
        coordinator: ResumeCoordinator,
        pause_store: InMemoryPauseStore,
    ) -> None:
        parent_run = await start(runner, registry, "approval-parent", {"amount": 7})
        parent = await pause_store.load(parent_run.execution_id)
        assert parent is not None
        child = await pause_store.load(parent.metadata["childExecutionId"])
        assert child is not None

        await coordinator.approve(child.approval_token, "reject")

        assert await pause_store.load(parent_run.execution_id) is not None


class TestClientPause:
    def _body(self, **overrides: Any) -> dict[str, Any]:
        body = {
            "workflowId": "expense-approval",
            "executionId": "client-exec-1",
            "blockId": "approve",
            "context": {
                "blockStates": {"start": {"output": {"amount": 3}, "executed": True}},
                "executedBlocks": ["start"],
                "activeExecutionPath": ["start", "approve"],
            },
            "workflowInput": {"amount": 3},
        }
        body.update(overrides)
        return body

    async def test_client_pause_then_approve(
        self, coordinator: ResumeCoordinator, pause_store: InMemoryPauseStore
    ) -> None:
        response = await coordinator.pause_from_client(self._body())

        assert response["success"] is True
        assert response["approveUrl"].endswith(f"/approve/{response['approvalToken']}")
        record = await pause_store.load("client-exec-1")
        assert record is not None
        assert record.workflow_state["name"] == "expense-approval"

        approved = await coordinator.approve(response["approvalToken"], "approve")

        assert approved["executionResult"]["output"] == {"approved": True, "amount": 3}

    async def test_missing_fields(self, coordinator: ResumeCoordinator) -> None:
        with pytest.raises(ResumeValidationError) as exc_info:
            await coordinator.pause_from_client(self._body(blockId=None))

        assert exc_info.value.message == "Missing required fields: workflowId, executionId, blockId"

    async def test_session_required_when_configured(self, runtime: RuntimeContext) -> None:
        coordinator = ResumeCoordinator(runtime, ResumeAuthenticator(session_tokens=["sess-1"]))

        with pytest.raises(ResumeUnauthorizedError):
            await coordinator.pause_from_client(self._body())

        response = await coordinator.pause_from_client(self._body(), session_token="sess-1")
        assert response["success"] is True

    async def test_unknown_workflow_without_state(self, coordinator: ResumeCoordinator) -> None:
        with pytest.raises(PausedExecutionNotFoundError):
            await coordinator.pause_from_client(self._body(workflowId="not-registered"))
