"""Tests for the pause store backends.

Every behavioral test runs against both InMemoryPauseStore and
SQLitePauseStore; the SQLite-only tests cover durability across instances.
"""

import asyncio
from collections.abc import AsyncIterator
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from conftest import BASE_URL

from workflows_resume.engine import (
    InMemoryPauseStore,
    PauseParams,
    PauseStore,
    SQLitePauseStore,
)
from workflows_resume.engine.execution_context import utc_now


@pytest.fixture(params=["memory", "sqlite"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncIterator[PauseStore]:
    """Each backend, initialized."""
    backend: PauseStore
    if request.param == "memory":
        backend = InMemoryPauseStore(base_url=BASE_URL)
    else:
        backend = SQLitePauseStore(tmp_path / "paused.db", base_url=BASE_URL)
    await backend.init()
    yield backend
    await backend.close()


def make_params(
    execution_id: str = "exec-1",
    workflow_id: str = "expense-approval",
    block_id: str = "approve",
    **overrides: Any,
) -> PauseParams:
    metadata = {
        "resumeTriggerType": "human",
        "blockName": "Manager Approval",
        "content": "Approve expense of 42?",
        "logs": [
            {"id": "log-start", "blockId": "start", "startedAt": "2025-01-01T00:00:00+00:00"}
        ],
    }
    metadata.update(overrides.pop("metadata", {}))
    return PauseParams(
        workflow_id=workflow_id,
        execution_id=execution_id,
        block_id=block_id,
        context={"executionId": execution_id, "workflowId": workflow_id, "blockStates": []},
        workflow_state={"name": workflow_id, "blocks": [], "edges": []},
        workflow_input={"amount": 42},
        metadata=metadata,
        **overrides,
    )


class TestPauseAndLoad:
    async def test_pause_then_load(self, store: PauseStore) -> None:
        receipt = await store.pause(make_params())

        record = await store.load("exec-1")

        assert receipt.created is True
        assert receipt.approve_url == f"{BASE_URL}/approve/{receipt.approval_token}"
        assert record is not None
        assert record.approval_token == receipt.approval_token
        assert record.approval_used is False
        assert record.workflow_input == {"amount": 42}
        assert record.block_id == "approve"
        assert record.resume_trigger_type == "human"

    async def test_block_id_is_always_in_metadata(self, store: PauseStore) -> None:
        params = make_params()
        params.metadata.pop("blockId", None)

        await store.pause(params)
        record = await store.load("exec-1")

        assert record is not None
        assert record.metadata["blockId"] == "approve"

    async def test_duplicate_pause_keeps_first_record(self, store: PauseStore) -> None:
        first = await store.pause(make_params())

        second = await store.pause(make_params(metadata={"content": "changed"}))

        record = await store.load("exec-1")
        assert second.created is False
        assert second.approval_token == first.approval_token
        assert record is not None
        assert record.metadata["content"] == "Approve expense of 42?"

    async def test_concurrent_pause_stores_one_record(self, store: PauseStore) -> None:
        first, second = await asyncio.gather(
            store.pause(make_params()),
            store.pause(make_params(metadata={"content": "changed"})),
        )

        records = await store.list_paused()

        assert first.approval_token == second.approval_token
        assert sorted([first.created, second.created]) == [False, True]
        assert [record.execution_id for record in records] == ["exec-1"]
        assert records[0].approval_token == first.approval_token

    async def test_supplied_token_is_used(
self, store: PauseStore) -> None:
        receipt = await store.pause(make_params(approval_token="tok-fixed"))

        assert receipt.approval_token == "tok-fixed"
        record = await store.load_by_token("tok-fixed")
        assert record is not None
        assert record.execution_id == "exec-1"

    async def test_load_unknown(self, store: PauseStore) -> None:
        assert await store.load("missing") is None
        assert await store.load_by_token("missing") is None

    async def test_summary_omits_logs(self, store: PauseStore) -> None:
        await store.pause(make_params())
        record = await store.load("exec-1")
        assert record is not None

        summary = record.summary()

        assert summary["executionId"] == "exec-1"
        assert "logs" not in summary["metadata"]
        assert summary["metadata"]["blockId"] == "approve"


class TestConsumption:
    """Approval tokens and claims are compare-and-set."""

    async def test_mark_approval_used_once(self, store: PauseStore) -> None:
        receipt = await store.pause(make_params())

        assert await store.mark_approval_used(receipt.approval_token) is True
        assert await store.mark_approval_used(receipt.approval_token) is False

        record = await store.load("exec-1")
        assert record is not None
        assert record.approval_used is True

    async def test_claim_once(self, store: PauseStore) -> None:
        await store.pause(make_params())

        assert await store.claim("exec-1") is True
        assert await store.claim("exec-1") is False

    async def test_claim_and_token_share_state(self, store: PauseStore) -> None:
        receipt = await store.pause(make_params())

        assert await store.claim("exec-1") is True
        assert await store.mark_approval_used(receipt.approval_token) is False

    async def test_unknown_token_is_not_consumed(self, store: PauseStore) -> None:
        assert await store.mark_approval_used("nope") is False
        assert await store.claim("nope") is False
        assert await store.token_consumed("nope") is False

    async def test_consumed_token_outlives_record(self, store: PauseStore) -> None:
        receipt = await store.pause(make_params())
        await store.mark_approval_used(receipt.approval_token)

        assert await store.delete("exec-1") is True

        assert await store.load_by_token(receipt.approval_token) is None
        assert await store.token_consumed(receipt.approval_token) is True

    async def test_release_makes_record_resumable(self, store: PauseStore) -> None:
        receipt = await store.pause(make_params())
        await store.claim("exec-1")

        await store.release("exec-1")

        assert await store.token_consumed(receipt.approval_token) is False
        assert await store.mark_approval_used(receipt.approval_token) is True


class TestRepause:
    async def test_repause_issues_fresh_token(self, store: PauseStore) -> None:
        first = await store.pause(make_params())
        await store.mark_approval_used(first.approval_token)

        second = await store.repause(
            make_params(
                block_id="second",
                metadata={
                    "resumeTriggerType": "api",
                    "apiInputFormat": [{"name": "amount", "type": "number"}],
                    "logs": [
                        {"id": "log-approve", "blockId": "approve", "startedAt": "2025-01-01T00:00:05+00:00"}
                    ],
                },
            )
        )

        record = await store.load("exec-1")
        assert record is not None
        assert second.approval_token != first.approval_token
        assert record.approval_token == second.approval_token
        assert record.approval_used is False
        assert record.block_id == "second"
        assert record.resume_trigger_type == "api"
        assert "apiInputFormat" in record.metadata

    async def test_repause_drops_previous_trigger_keys(self, store: PauseStore) -> None:
        await store.pause(make_params())

        params = make_params(block_id="second", metadata={"resumeTriggerType": "api"})
        params.metadata.pop("content")
        params.metadata.pop("blockName")
        await store.repause(params)

        record = await store.load("exec-1")
        assert record is not None
        assert "content" not in record.metadata
        assert "blockName" not in record.metadata

    async def test_repause_merges_logs(self, store: PauseStore) -> None:
        await store.pause(make_params())

        await store.repause(
            make_params(
                metadata={
                    "logs": [
                        {"id": "log-start", "blockId": "start", "startedAt": "2025-01-01T00:00:00+00:00"},
                        {"id": "log-approve", "blockId": "approve", "startedAt": "2025-01-01T00:00:05+00:00"},
                    ]
                }
            )
        )

        record = await store.load("exec-1")
        assert record is not None
        assert [log["id"] for log in record.logs] == ["log-start", "log-approve"]

    async def test_repause_without_record_creates_one(self, store: PauseStore) -> None:
        receipt = await store.repause(make_params(execution_id="exec-new"))

        record = await store.load("exec-new")
        assert record is not None
        assert record.approval_token == receipt.approval_token


class TestRecordUpdates:
    async def test_append_logs_dedupes(self, store: PauseStore) -> None:
        await store.pause(make_params())
        resume_log = {
            "id": "approve-resume-1",
            "blockId": "approve",
            "startedAt": "2025-01-01T00:01:00+00:00",
        }

        assert await store.append_logs("exec-1", [resume_log]) is True
        assert await store.append_logs("exec-1", [resume_log]) is True

        record = await store.load("exec-1")
        assert record is not None
        assert [log["id"] for log in record.logs] == ["log-start", "approve-resume-1"]

    async def test_append_logs_without_record(self, store: PauseStore) -> None:
        assert await store.append_logs("missing", [{"id": "x"}]) is False

    async def test_update_context(self, store: PauseStore) -> None:
        await store.pause(make_params())
        new_context = {"executionId": "exec-1", "workflowId": "expense-approval", "executedBlocks": ["start"]}

        assert await store.update_context("exec-1", new_context, {"childDone": True}) is True

        record = await store.load("exec-1")
        assert record is not None
        assert record.execution_context == new_context
        assert record.metadata["childDone"] is True
        assert record.metadata["blockId"] == "approve"

    async def test_update_context_without_record(self, store: PauseStore) -> None:
        assert await store.update_context("missing", {}) is False

    async def test_delete(self, store: PauseStore) -> None:
        await store.pause(make_params())

        assert await store.delete("exec-1") is True
        assert await store.delete("exec-1") is False


class TestListing:
    async def test_list_paused_newest_first(self, store: PauseStore) -> None:
        now = utc_now()
        await store.pause(make_params("exec-old", paused_at=now - timedelta(minutes=5)))
        await store.pause(make_params("exec-new", paused_at=now))

        records = await store.list_paused()

        assert [r.execution_id for r in records] == ["exec-new", "exec-old"]

    async def test_list_paused_filters(self, store: PauseStore) -> None:
        await store.pause(make_params("exec-a", workflow_id="wf-a", block_id="approve"))
        await store.pause(make_params("exec-b", workflow_id="wf-b", block_id="approve"))
        await store.pause(make_params("exec-c", workflow_id="wf-a", block_id="other"))

        by_workflow = await store.list_paused(workflow_id="wf-a")
        by_both = await store.list_paused(workflow_id="wf-a", block_id="approve")

        assert {r.execution_id for r in by_workflow} == {"exec-a", "exec-c"}
        assert [r.execution_id for r in by_both] == ["exec-a"]

    async def test_list_paused_excludes_consumed(self, store: PauseStore) -> None:
        await store.pause(make_params("exec-a"))
        await store.pause(make_params("exec-b"))
        await store.claim("exec-a")

        records = await store.list_paused()

        assert [r.execution_id for r in records] == ["exec-b"]

    async def test_list_due(self, store: PauseStore) -> None:
        now = utc_now()
        await store.pause(
            make_params(
                "exec-due",
                block_id="delay",
                metadata={"resumeTriggerType": "schedule", "resumeAt": (now - timedelta(seconds=1)).isoformat()},
            )
        )
        await store.pause(
            make_params(
                "exec-later",
                block_id="delay",
                metadata={"resumeTriggerType": "schedule", "resumeAt": (now + timedelta(hours=1)).isoformat()},
            )
        )
        await store.pause(make_params("exec-human"))

        due = await store.list_due(now)

        assert [r.execution_id for r in due] == ["exec-due"]


class TestSQLiteDurability:
    async def test_records_survive_new_instance(self, tmp_path: Path) -> None:
        db_path = tmp_path / "paused.db"
        first = SQLitePauseStore(db_path, base_url=BASE_URL)
        await first.init()
        receipt = await first.pause(make_params())
        await first.close()

        second = SQLitePauseStore(db_path, base_url=BASE_URL)
        await second.init()
        record = await second.load_by_token(receipt.approval_token)

        assert record is not None
        assert record.workflow_input == {"amount": 42}
        assert await second.mark_approval_used(receipt.approval_token) is True

    async def test_consumed_tokens_survive_new_instance(self, tmp_path: Path) -> None:
        db_path = tmp_path / "paused.db"
        first = SQLitePauseStore(db_path, base_url=BASE_URL)
        await first.init()
        receipt = await first.pause(make_params())
        await first.mark_approval_used(receipt.approval_token)
        await first.delete("exec-1")

        second = SQLitePauseStore(db_path, base_url=BASE_URL)
        await second.init()

        assert await second.token_consumed(receipt.approval_token) is True

    async def test_default_path_uses_state_dir(self, isolated_state_dir: Path) -> None:
        store = SQLitePauseStore(base_url=BASE_URL)
        await store.init()

        await store.pause(make_params())

        assert any(isolated_state_dir.rglob("paused.db"))
