"""Pause store: durable records of suspended executions.

One record per execution id. A record holds everything needed to resume
without the original request: the serialized context, the frozen graph,
the environment and input snapshots, and the resume metadata (block
paused at, trigger type and its schema, parent linkage).

Concurrency model:
- pause() is insert-or-noop: a duplicate pause for the same execution
  returns the token of the existing record instead of failing.
- mark_approval_used() / claim() are compare-and-set: exactly one caller
  wins, which is what serializes concurrent resumes of one execution.
  Consumed tokens outlive their record, so a replayed approval link is
  reported as already used rather than unknown.

Backends:
- SQLitePauseStore: durable, shared by every process on the host
- InMemoryPauseStore: asyncio.Lock protected dict, tests and local runs
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import secrets
import sqlite3
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, Field

from .context_codec import serialize_context, serialize_workflow_state
from .exceptions import PausePersistenceError
from .execution_context import ExecutionContext, utc_now
from .execution_log import merge_logs
from .settings import DEFAULT_BASE_URL
from .state_config import StateConfig

if TYPE_CHECKING:
    from .schema import WorkflowGraph

logger = logging.getLogger(__name__)

T = TypeVar("T")

# waitBlockInfo keys copied into the record's metadata when present
_TRIGGER_METADATA_KEYS = (
    "blockName",
    "triggerConfig",
    "resumeUrl",
    "resumeAt",
    "description",
    "humanOperation",
    "humanInputFormat",
    "content",
    "apiInputFormat",
    "apiResponseMode",
    "apiEditorResponse",
    "apiBuilderResponse",
    "childExecutionId",
    "childWorkflowId",
)


# =============================================================================
# Models
# =============================================================================


class PausedExecution(BaseModel):
    """A persisted pause record."""

    id: str
    workflow_id: str
    execution_id: str
    user_id: str | None = None
    paused_at: datetime
    execution_context: dict[str, Any]
    workflow_state: dict[str, Any]
    environment_variables: dict[str, str] = Field(default_factory=dict)
    workflow_input: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    approval_token: str
    approval_used: bool = False
    created_at: datetime
    updated_at: datetime

    @property
    def block_id(self) -> str | None:
        return self.metadata.get("blockId")

    @property
    def resume_trigger_type(self) -> str | None:
        return self.metadata.get("resumeTriggerType")

    @property
    def is_deployed_context(self) -> bool:
        return bool(self.metadata.get("isDeployedContext"))

    @property
    def parent_execution_info(self) -> dict[str, Any] | None:
        return self.metadata.get("parentExecutionInfo")

    @property
    def logs(self) -> list[dict[str, Any]]:
        return list(self.metadata.get("logs") or [])

    def summary(self) -> dict[str, Any]:
        """Listing view: identity and metadata without context or graph."""
        metadata = {k: v for k, v in self.metadata.items() if k != "logs"}
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "executionId": self.execution_id,
            "pausedAt": self.paused_at.isoformat(),
            "approvalUsed": self.approval_used,
            "metadata": metadata,
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class PauseParams:
    """Everything pause() needs to create a record."""

    workflow_id: str
    execution_id: str
    block_id: str
    context: dict[str, Any]
    workflow_state: dict[str, Any]
    paused_at: datetime = field(default_factory=utc_now)
    environment_variables: dict[str, str] = field(default_factory=dict)
    workflow_input: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    approval_token: str | None = None


@dataclass
class PauseReceipt:
    approval_token: str
    approve_url: str
    created: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"approvalToken": self.approval_token, "approveUrl": self.approve_url}


def build_pause_metadata(context: ExecutionContext) -> dict[str, Any]:
    """Resume metadata for a context that just paused.

    Raises:
        ValueError: If the context carries no waitBlockInfo
    """
    info = context.wait_block_info
    if not info or not info.get("blockId"):
        raise ValueError(f"Execution {context.execution_id} is not paused at a block")

    trigger = info.get("resumeTriggerType") or info.get("triggerType") or "human"
    metadata: dict[str, Any] = {
        "blockId": info["blockId"],
        "resumeTriggerType": trigger,
        "triggerType": trigger,
        "pausedAt": info.get("pausedAt") or utc_now().isoformat(),
        "isDeployedContext": context.is_deployed_context,
        "parentExecutionInfo": context.parent_execution_info,
    }
    for key in _TRIGGER_METADATA_KEYS:
        if key in info:
            metadata[key] = info[key]
    metadata["logs"] = [log.to_dict() for log in context.block_logs]
    return metadata


def pause_params_from_context(
    context: ExecutionContext,
    workflow_state: dict[str, Any] | WorkflowGraph,
    workflow_input: dict[str, Any] | None = None,
    user_id: str | None = None,
) -> PauseParams:
    """Build PauseParams for a context whose run just stopped at a wait block."""
    if not isinstance(workflow_state, dict):
        workflow_state = serialize_workflow_state(workflow_state)

    metadata = build_pause_metadata(context)
    info = context.wait_block_info or {}
    return PauseParams(
        workflow_id=context.workflow_id,
        execution_id=context.execution_id,
        block_id=metadata["blockId"],
        context=serialize_context(context),
        workflow_state=workflow_state,
        paused_at=datetime.fromisoformat(metadata["pausedAt"]),
        environment_variables=dict(context.environment_variables),
        workflow_input=dict(workflow_input or {}),
        metadata=metadata,
        user_id=user_id,
        approval_token=info.get("approvalToken"),
    )


def merge_pause_metadata(
    existing: Mapping[str, Any], update: Mapping[str, Any], logs: Iterable[Any] | None = None
) -> dict[str, Any]:
    """Overlay metadata, merging (never replacing) the stored logs."""
    merged = {**existing, **update}
    merged["logs"] = merge_logs(existing.get("logs"), update.get("logs"), logs)
    return merged


# =============================================================================
# Store interface
# =============================================================================


class PauseStore(ABC):
    """Abstract pause store."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")

    def approve_url(self, token: str) -> str:
        return f"{self.base_url}/approve/{token}"

    async def init(self) -> None:  # noqa: B027
        """Prepare backend storage."""

    @abstractmethod
    async def pause(self, params: PauseParams) -> PauseReceipt:
        """Insert a record; an existing record for the execution wins."""

    @abstractmethod
    async def repause(self, params: PauseParams) -> PauseReceipt:
        """Upsert after a resume hit another wait block.

        Context, graph and paused_at are replaced, metadata is overlaid with
        logs merged, and the record becomes resumable again (fresh token).
        """

    @abstractmethod
    async def load(self, execution_id: str) -> PausedExecution | None: ...

    @abstractmethod
    async def load_by_token(self, token: str) -> PausedExecution | None: ...

    @abstractmethod
    async def mark_approval_used(self, token: str) -> bool:
        """Consume an approval token. True for exactly one caller."""

    @abstractmethod
    async def claim(self, execution_id: str) -> bool:
        """Consume the record's current token by execution id. True for exactly one caller."""

    @abstractmethod
    async def token_consumed(self, token: str) -> bool:
        """Whether a token was consumed, even if its record has since been deleted."""

    @abstractmethod
    async def release(self, execution_id: str) -> None:
        """Undo a claim after a resume attempt failed before making progress."""

    @abstractmethod
    async def delete(self, execution_id: str) -> bool: ...

    @abstractmethod
    async def append_logs(self, execution_id: str, logs: Iterable[Mapping[str, Any]]) -> bool:
        """Merge block logs into metadata.logs. False if no record exists."""

    @abstractmethod
    async def update_context(
        self,
        execution_id: str,
        context: dict[str, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Replace the serialized context, optionally overlaying metadata."""

    @abstractmethod
    async def list_paused(
        self, workflow_id: str | None = None, block_id: str | None = None
    ) -> list[PausedExecution]:
        """Resumable records, newest first, optionally filtered."""

    async def list_due(self, now: datetime | None = None) -> list[PausedExecution]:
        """Schedule-triggered records whose resumeAt has passed."""
        now = now or utc_now()
        due = []
        for paused in await self.list_paused():
            if paused.resume_trigger_type != "schedule":
                continue
            resume_at = paused.metadata.get("resumeAt")
            if resume_at and datetime.fromisoformat(resume_at) <= now:
                due.append(paused)
        return due

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryPauseStore(PauseStore):
    """Pause store held in process memory.

    Thread-safe implementation using asyncio.Lock. Records are deep-copied
    in and out so callers never share mutable state with the store.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL) -> None:
        super().__init__(base_url)
        self._records: dict[str, PausedExecution] = {}
        self._consumed: set[str] = set()
        self._lock = asyncio.Lock()

    async def pause(self, params: PauseParams) -> PauseReceipt:
        async with self._lock:
            existing = self._records.get(params.execution_id)
            if existing is not None:
                logger.info(f"Pause for {params.execution_id} already exists, reusing token")
                return PauseReceipt(
                    existing.approval_token, self.approve_url(existing.approval_token), False
                )

            record = _new_record(params)
            self._records[params.execution_id] = record
            return PauseReceipt(record.approval_token, self.approve_url(record.approval_token))

    async def repause(self, params: PauseParams) -> PauseReceipt:
        async with self._lock:
            existing = self._records.get(params.execution_id)
            if existing is None:
                record = _new_record(params)
            else:
                record = existing.model_copy(
                    update={
                        "paused_at": params.paused_at,
                        "execution_context": copy.deepcopy(params.context),
                        "workflow_state": copy.deepcopy(params.workflow_state),
                        "environment_variables": dict(params.environment_variables),
                        "workflow_input": copy.deepcopy(params.workflow_input),
                        "metadata": merge_pause_metadata(
                            _without_trigger_keys(existing.metadata), params.metadata
                        ),
                        "approval_token": params.approval_token or _new_token(),
                        "approval_used": False,
                        "updated_at": utc_now(),
                    }
                )
            self._records[params.execution_id] = record
            return PauseReceipt(record.approval_token, self.approve_url(record.approval_token))

    async def load(self, execution_id: str) -> PausedExecution | None:
        async with self._lock:
            record = self._records.get(execution_id)
            return record.model_copy(deep=True) if record else None

    async def load_by_token(self, token: str) -> PausedExecution | None:
        async with self._lock:
            for record in self._records.values():
                if record.approval_token == token:
                    return record.model_copy(deep=True)
            return None

    async def mark_approval_used(self, token: str) -> bool:
        async with self._lock:
            for record in self._records.values():
                if record.approval_token == token:
                    return self._consume(record)
            return False

    async def claim(self, execution_id: str) -> bool:
        async with self._lock:
            record = self._records.get(execution_id)
            return self._consume(record) if record else False

    def _consume(self, record: PausedExecution) -> bool:
        if record.approval_used:
            return False
        record.approval_used = True
        record.updated_at = utc_now()
        self._consumed.add(record.approval_token)
        return True

    async def token_consumed(self, token: str) -> bool:
        async with self._lock:
            return token in self._consumed

    async def release(self, execution_id: str) -> None:
        async with self._lock:
            record = self._records.get(execution_id)
            if record is not None:
                record.approval_used = False
                record.updated_at = utc_now()
                self._consumed.discard(record.approval_token)

    async def delete(self, execution_id: str) -> bool:
        async with self._lock:
            return self._records.pop(execution_id, None) is not None

    async def append_logs(self, execution_id: str, logs: Iterable[Mapping[str, Any]]) -> bool:
        async with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                return False
            record.metadata = merge_pause_metadata(record.metadata, {}, logs)
            record.updated_at = utc_now()
            return True

    async def update_context(
        self,
        execution_id: str,
        context: dict[str, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        async with self._lock:
            record = self._records.get(execution_id)
            if record is None:
                return False
            record.execution_context = copy.deepcopy(context)
            if metadata:
                record.metadata = merge_pause_metadata(record.metadata, metadata)
            record.updated_at = utc_now()
            return True

    async def list_paused(
        self, workflow_id: str | None = None, block_id: str | None = None
    ) -> list[PausedExecution]:
        async with self._lock:
            records = [
                r.model_copy(deep=True)
                for r in self._records.values()
                if not r.approval_used
                and (workflow_id is None or r.workflow_id == workflow_id)
                and (block_id is None or r.block_id == block_id)
            ]
        return sorted(records, key=lambda r: r.paused_at, reverse=True)


# =============================================================================
# SQLite backend
# =============================================================================


class SQLitePauseStore(PauseStore):
    """SQLite-backed pause store.

    Storage Layout:
        ~/.workflows/states/<hash-of-cwd>/paused.db
          paused_executions   # one row per execution id, JSON columns

    All blocking sqlite3 calls run in the default thread pool executor.
    Write failures surface as PausePersistenceError.
    """

    def __init__(self, db_path: Path | str | None = None, base_url: str = DEFAULT_BASE_URL) -> None:
        super().__init__(base_url)
        self._db_path = str(db_path or StateConfig.get_paused_db_path())

    async def init(self) -> None:
        await self._run_in_executor(self._init_db)
        logger.info(f"SQLitePauseStore initialized: db={self._db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS paused_executions (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    execution_id TEXT NOT NULL UNIQUE,
                    user_id TEXT,
                    paused_at TEXT NOT NULL,
                    execution_context TEXT NOT NULL,
                    workflow_state TEXT NOT NULL,
                    environment_variables TEXT NOT NULL,
                    workflow_input TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    approval_token TEXT NOT NULL UNIQUE,
                    approval_used INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_paused_workflow ON paused_executions(workflow_id)"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS consumed_tokens (
                    token TEXT PRIMARY KEY,
                    execution_id TEXT NOT NULL,
                    consumed_at TEXT NOT NULL
                )
            """)
        finally:
            conn.close()

    async def pause(self, params: PauseParams) -> PauseReceipt:
        record = _new_record(params)

        def _insert() -> PauseReceipt:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "INSERT INTO paused_executions VALUES "
                    "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(execution_id) DO NOTHING",
                    _record_row(record),
                )
                if cursor.rowcount == 1:
                    return PauseReceipt(record.approval_token, self.approve_url(record.approval_token))

                row = conn.execute(
                    "SELECT approval_token FROM paused_executions WHERE execution_id = ?",
                    (params.execution_id,),
                ).fetchone()
            finally:
                conn.close()
            logger.info(f"Pause for {params.execution_id} already exists, reusing token")
            return PauseReceipt(row["approval_token"], self.approve_url(row["approval_token"]), False)

        return await self._write(_insert, f"pause execution {params.execution_id}")

    async def repause(self, params: PauseParams) -> PauseReceipt:
        def _upsert() -> PauseReceipt:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT * FROM paused_executions WHERE execution_id = ?",
                    (params.execution_id,),
                ).fetchone()
                if row is None:
                    record = _new_record(params)
                    conn.execute(
                        "INSERT INTO paused_executions VALUES "
                        "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        _record_row(record),
                    )
                else:
                    existing = _row_to_record(row)
                    token = params.approval_token or _new_token()
                    conn.execute(
                        """
                        UPDATE paused_executions
                        SET paused_at = ?, execution_context = ?, workflow_state = ?,
                            environment_variables = ?, workflow_input = ?, metadata = ?,
                            approval_token = ?, approval_used = 0, updated_at = ?
                        WHERE execution_id = ?
                        """,
                        (
                            params.paused_at.isoformat(),
                            _dumps(params.context),
                            _dumps(params.workflow_state),
                            _dumps(params.environment_variables),
                            _dumps(params.workflow_input),
                            _dumps(
                                merge_pause_metadata(
                                    _without_trigger_keys(existing.metadata), params.metadata
                                )
                            ),
                            token,
                            utc_now().isoformat(),
                            params.execution_id,
                        ),
                    )
                    record = existing.model_copy(update={"approval_token": token})
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
            return PauseReceipt(record.approval_token, self.approve_url(record.approval_token))

        return await self._write(_upsert, f"re-pause execution {params.execution_id}")

    async def load(self, execution_id: str) -> PausedExecution | None:
        return await self._select_one("execution_id = ?", execution_id)

    async def load_by_token(self, token: str) -> PausedExecution | None:
        return await self._select_one("approval_token = ?", token)

    async def _select_one(self, where: str, value: str) -> PausedExecution | None:
        def _read() -> PausedExecution | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    f"SELECT * FROM paused_executions WHERE {where}", (value,)
                ).fetchone()
            finally:
                conn.close()
            return _row_to_record(row) if row else None

        return await self._run_in_executor(_read)

    async def mark_approval_used(self, token: str) -> bool:
        return await self._compare_and_set("approval_token = ?", token)

    async def claim(self, execution_id: str) -> bool:
        return await self._compare_and_set("execution_id = ?", execution_id)

    async def _compare_and_set(self, where: str, value: str) -> bool:
        def _update() -> bool:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT execution_id, approval_token FROM paused_executions "
                    f"WHERE {where} AND approval_used = 0",
                    (value,),
                ).fetchone()
                if row is None:
                    conn.execute("COMMIT")
                    return False

                now = utc_now().isoformat()
                conn.execute(
                    "UPDATE paused_executions SET approval_used = 1, updated_at = ? "
                    "WHERE execution_id = ?",
                    (now, row["execution_id"]),
                )
                conn.execute(
                    "INSERT OR IGNORE INTO consumed_tokens VALUES (?, ?, ?)",
                    (row["approval_token"], row["execution_id"], now),
                )
                conn.execute("COMMIT")
                return True
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        return await self._write(_update, "consume approval")

    async def token_consumed(self, token: str) -> bool:
        def _read() -> bool:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT 1 FROM consumed_tokens WHERE token = ?", (token,)
                ).fetchone()
            finally:
                conn.close()
            return row is not None

        return await self._run_in_executor(_read)

    async def release(self, execution_id: str) -> None:
        def _update() -> None:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    "DELETE FROM consumed_tokens WHERE token IN "
                    "(SELECT approval_token FROM paused_executions WHERE execution_id = ?)",
                    (execution_id,),
                )
                conn.execute(
                    "UPDATE paused_executions SET approval_used = 0, updated_at = ? "
                    "WHERE execution_id = ?",
                    (utc_now().isoformat(), execution_id),
                )
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        await self._write(_update, f"release execution {execution_id}")

    async def delete(self, execution_id: str) -> bool:
        def _delete() -> bool:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "DELETE FROM paused_executions WHERE execution_id = ?", (execution_id,)
                )
                return cursor.rowcount == 1
            finally:
                conn.close()

        return await self._write(_delete, f"delete execution {execution_id}")

    async def append_logs(self, execution_id: str, logs: Iterable[Mapping[str, Any]]) -> bool:
        new_logs = list(logs)
        return await self._read_modify_write(
            execution_id,
            lambda record: {"metadata": merge_pause_metadata(record.metadata, {}, new_logs)},
            f"append logs to {execution_id}",
        )

    async def update_context(
        self,
        execution_id: str,
        context: dict[str, Any],
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        def _changes(record: PausedExecution) -> dict[str, Any]:
            changes: dict[str, Any] = {"execution_context": context}
            if metadata:
                changes["metadata"] = merge_pause_metadata(record.metadata, metadata)
            return changes

        return await self._read_modify_write(
            execution_id, _changes, f"update context of {execution_id}"
        )

    async def _read_modify_write(
        self,
        execution_id: str,
        changes_for: Callable[[PausedExecution], dict[str, Any]],
        action: str,
    ) -> bool:
        def _update() -> bool:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT * FROM paused_executions WHERE execution_id = ?", (execution_id,)
                ).fetchone()
                if row is None:
                    conn.execute("COMMIT")
                    return False

                changes = changes_for(_row_to_record(row))
                assignments = ", ".join(f"{column} = ?" for column in changes)
                conn.execute(
                    f"UPDATE paused_executions SET {assignments}, updated_at = ? "
                    "WHERE execution_id = ?",
                    (*(_dumps(v) for v in changes.values()), utc_now().isoformat(), execution_id),
                )
                conn.execute("COMMIT")
                return True
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        return await self._write(_update, action)

    async def list_paused(
        self, workflow_id: str | None = None, block_id: str | None = None
    ) -> list[PausedExecution]:
        def _query() -> list[PausedExecution]:
            conn = self._connect()
            try:
                if workflow_id:
                    rows = conn.execute(
                        """
                        SELECT * FROM paused_executions
                        WHERE approval_used = 0 AND workflow_id = ?
                        ORDER BY paused_at DESC
                        """,
                        (workflow_id,),
                    ).fetchall()
                else:
                    rows = conn.execute(
                        """
                        SELECT * FROM paused_executions
                        WHERE approval_used = 0
                        ORDER BY paused_at DESC
                        """
                    ).fetchall()
            finally:
                conn.close()
            records = [_row_to_record(row) for row in rows]
            if block_id:
                records = [r for r in records if r.block_id == block_id]
            return records

        return await self._run_in_executor(_query)

    async def _write(self, func: Callable[[], T], action: str) -> T:
        try:
            return await self._run_in_executor(func)
        except sqlite3.Error as e:
            logger.error(f"Pause store failed to {action}: {e}")
            raise PausePersistenceError(f"Failed to {action}: {e}") from e

    async def _run_in_executor(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)


# =============================================================================
# Helpers
# =============================================================================


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def _new_record(params: PauseParams) -> PausedExecution:
    now = utc_now()
    return PausedExecution(
        id=str(uuid.uuid4()),
        workflow_id=params.workflow_id,
        execution_id=params.execution_id,
        user_id=params.user_id,
        paused_at=params.paused_at,
        execution_context=copy.deepcopy(params.context),
        workflow_state=copy.deepcopy(params.workflow_state),
        environment_variables=dict(params.environment_variables),
        workflow_input=copy.deepcopy(params.workflow_input),
        metadata={**copy.deepcopy(params.metadata), "blockId": params.block_id},
        approval_token=params.approval_token or _new_token(),
        approval_used=False,
        created_at=now,
        updated_at=now,
    )


def _without_trigger_keys(metadata: Mapping[str, Any]) -> dict[str, Any]:
    # A re-pause may stop at a block with a different trigger
    return {k: v for k, v in metadata.items() if k not in _TRIGGER_METADATA_KEYS}


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _record_row(record: PausedExecution) -> tuple[Any, ...]:
    return (
        record.id,
        record.workflow_id,
        record.execution_id,
        record.user_id,
        record.paused_at.isoformat(),
        _dumps(record.execution_context),
        _dumps(record.workflow_state),
        _dumps(record.environment_variables),
        _dumps(record.workflow_input),
        _dumps(record.metadata),
        record.approval_token,
        int(record.approval_used),
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
    )


def _row_to_record(row: sqlite3.Row) -> PausedExecution:
    data = dict(row)
    for column in (
        "execution_context",
        "workflow_state",
        "environment_variables",
        "workflow_input",
        "metadata",
    ):
        data[column] = json.loads(data[column])
    data["approval_used"] = bool(data["approval_used"])
    return PausedExecution.model_validate(data)


__all__ = [
    "InMemoryPauseStore",
    "PauseParams",
    "PauseReceipt",
    "PauseStore",
    "PausedExecution",
    "SQLitePauseStore",
    "build_pause_metadata",
    "merge_pause_metadata",
    "pause_params_from_context",
]
