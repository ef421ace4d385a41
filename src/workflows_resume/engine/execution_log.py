"""Execution log persistence.

Three pieces:

- merge_logs(): dedupe block logs by a stable key and order them by start time.
  Re-delivering the same resume twice must not duplicate log entries.
- build_trace_spans(): one span per block log, for trace rendering.
- ExecutionLogStore: SQLite-backed log collaborator. A row is "pending" while
  its execution is paused and becomes terminal (completed/failed) exactly once.

Storage Layout:
    ~/.workflows/states/<hash-of-cwd>/executions.db
      executions   # one row per execution id
      stats        # run counters
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from .execution_context import BlockLog, utc_now
from .state_config import StateConfig

if TYPE_CHECKING:
    from .execution_result import ExecutionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

TERMINAL_STATUSES = frozenset({"completed", "failed"})
STAT_KEYS = ("total_runs", "completed_runs", "failed_runs", "rejected_runs")


def log_key(log: Mapping[str, Any]) -> str:
    """Stable identity of a block log entry."""
    if log.get("id"):
        return f"id:{log['id']}"
    outcome = "error" if log.get("error") or log.get("success") is False else "ok"
    return f"{log.get('blockId')}-{log.get('startedAt')}-{outcome}"


def merge_logs(*log_sets: Iterable[BlockLog | Mapping[str, Any]] | None) -> list[dict[str, Any]]:
    """Merge block log sets; the first entry seen for a key wins, then sort by start time."""
    merged: dict[str, dict[str, Any]] = {}
    for log_set in log_sets:
        for log in log_set or []:
            entry = log.to_dict() if isinstance(log, BlockLog) else dict(log)
            merged.setdefault(log_key(entry), entry)

    return sorted(merged.values(), key=lambda e: str(e.get("startedAt") or e.get("endedAt") or ""))


def build_trace_spans(
    logs: Iterable[Mapping[str, Any]], total_duration_ms: float | None = None
) -> tuple[list[dict[str, Any]], float]:
    """Derive trace spans from block logs.

    Returns:
        (spans, total_duration_ms); the total falls back to the sum of span durations
    """
    spans = []
    for index, log in enumerate(logs):
        span = {
            "id": log.get("id") or f"span-{log.get('blockId')}-{index}",
            "name": log.get("blockName") or log.get("blockId"),
            "type": log.get("blockType"),
            "blockId": log.get("blockId"),
            "startTime": log.get("startedAt"),
            "endTime": log.get("endedAt"),
            "duration": log.get("durationMs", 0),
            "status": "error" if log.get("success") is False else "success",
            "input": log.get("input", {}),
            "output": log.get("output", {}),
        }
        if log.get("error"):
            span["error"] = log["error"]
        spans.append(span)

    if total_duration_ms is None:
        total_duration_ms = float(sum(span["duration"] or 0 for span in spans))
    return spans, total_duration_ms


class ExecutionLogStore:
    """SQLite store for execution logs and run counters.

    Idempotent per execution id: repeated completion calls never create a
    second row or bump counters twice.

    Example:
        store = ExecutionLogStore()
        await store.init()
        await store.persist(execution_id, workflow_id, logs=logs)      # paused
        await store.persist(execution_id, workflow_id, result=result)  # finished
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = str(db_path or StateConfig.get_executions_db_path())

    async def init(self) -> None:
        await self._run_in_executor(self._init_db)
        logger.info(f"ExecutionLogStore initialized: db={self._db_path}")

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
                CREATE TABLE IF NOT EXISTS executions (
                    execution_id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    trigger TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    total_duration_ms REAL,
                    logs TEXT NOT NULL,
                    trace_spans TEXT NOT NULL,
                    final_output TEXT,
                    error TEXT,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_exec_workflow ON executions(workflow_id)")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS stats (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            for key in STAT_KEYS:
                conn.execute("INSERT OR IGNORE INTO stats VALUES (?, 0)", (key,))
        finally:
            conn.close()

    async def persist(
        self,
        execution_id: str,
        workflow_id: str,
        *,
        logs: Iterable[Mapping[str, Any]] | None = None,
        result: ExecutionResult | None = None,
        trigger: str = "manual",
    ) -> None:
        """Record progress of an execution.

        Without a result the row is (or stays) pending and the logs are merged
        in. With a result the row turns terminal; a second terminal call is a
        no-op unless it brings new trace spans.
        """
        new_logs = merge_logs(logs, result.logs if result else None)
        now = utc_now().isoformat()

        def _write() -> None:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT status, logs, started_at FROM executions WHERE execution_id = ?",
                    (execution_id,),
                ).fetchone()

                if row is None:
                    conn.execute(
                        "INSERT INTO executions VALUES (?, ?, 'pending', ?, ?, NULL, NULL, "
                        "'[]', '[]', NULL, NULL, ?)",
                        (execution_id, workflow_id, trigger, now, now),
                    )
                    conn.execute(
                        "UPDATE stats SET value = value + 1 WHERE key = 'total_runs'"
                    )
                    stored_logs: list[dict[str, Any]] = []
                    status = "pending"
                else:
                    stored_logs = json.loads(row["logs"])
                    status = row["status"]

                merged = merge_logs(stored_logs, new_logs)

                if result is None:
                    if status in TERMINAL_STATUSES:
                        logger.warning(
                            f"Ignoring pending log update for finished execution {execution_id}"
                        )
                    else:
                        conn.execute(
                            "UPDATE executions SET logs = ?, updated_at = ? "
                            "WHERE execution_id = ?",
                            (json.dumps(merged, default=str), now, execution_id),
                        )
                    conn.execute("COMMIT")
                    return

                spans, total = build_trace_spans(merged, result.duration_ms)
                if status in TERMINAL_STATUSES and merged == stored_logs:
                    logger.debug(f"Execution {execution_id} already finalized, skipping")
                    conn.execute("COMMIT")
                    return

                final_status = "completed" if result.status == "success" else "failed"
                conn.execute(
                    """
                    UPDATE executions
                    SET status = ?, ended_at = ?, total_duration_ms = ?, logs = ?,
                        trace_spans = ?, final_output = ?, error = ?, updated_at = ?
                    WHERE execution_id = ?
                    """,
                    (
                        final_status,
                        now,
                        total,
                        json.dumps(merged, default=str),
                        json.dumps(spans, default=str),
                        json.dumps(result.output, default=str),
                        result.error,
                        now,
                        execution_id,
                    ),
                )
                if status not in TERMINAL_STATUSES:
                    counter = "completed_runs" if result.status == "success" else "failed_runs"
                    conn.execute("UPDATE stats SET value = value + 1 WHERE key = ?", (counter,))
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        await self._run_in_executor(_write)

    async def get(self, execution_id: str) -> dict[str, Any] | None:
        """Load one execution row with its JSON columns decoded."""

        def _read() -> dict[str, Any] | None:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT * FROM executions WHERE execution_id = ?", (execution_id,)
                ).fetchone()
            finally:
                conn.close()
            if row is None:
                return None
            data = dict(row)
            for column in ("logs", "trace_spans", "final_output"):
                if data[column] is not None:
                    data[column] = json.loads(data[column])
            return data

        return await self._run_in_executor(_read)

    async def increment_stat(self, key: str) -> None:
        """Increment a run counter (total_runs, completed_runs, failed_runs, rejected_runs)."""

        def _increment() -> None:
            conn = self._connect()
            try:
                conn.execute("UPDATE stats SET value = value + 1 WHERE key = ?", (key,))
            finally:
                conn.close()

        await self._run_in_executor(_increment)

    async def get_stats(self) -> dict[str, int]:
        def _query() -> dict[str, int]:
            conn = self._connect()
            try:
                return {row["key"]: row["value"] for row in conn.execute("SELECT * FROM stats")}
            finally:
                conn.close()

        return await self._run_in_executor(_query)

    async def _run_in_executor(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)


__all__ = ["ExecutionLogStore", "build_trace_spans", "log_key", "merge_logs"]
