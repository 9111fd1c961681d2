"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..contracts import Run, RunStatus, TraceEvent, Workflow
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflows, runs and traces using SQLite.

    Models are stored as JSON text; a few columns are duplicated out of the
    body so runs can be filtered without decoding every row.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        # One connection is shared by worker threads, so statements are serialized.
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    async def connect(self) -> None:
        if self._conn is not None:
            return
        await asyncio.to_thread(self._open)

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await asyncio.to_thread(conn.close)

    def _open(self) -> None:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        self._conn = conn
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                body TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                body TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS trace_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                run_id TEXT NOT NULL,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_trace_events_run ON trace_events (run_id, seq)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._open()
        return self._conn

    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            conn = self._require_conn()
            cur = conn.cursor()
            cur.execute(query, params)
            conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._require_conn().cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._require_conn().cursor()
            cur.execute(query, params)
            return cur.fetchall()

    # ------------------------------------------------------------------
    # Workflows
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM workflows WHERE id = ?", workflow_id
        )
        return Workflow.model_validate_json(row["body"]) if row else None

    async def save_workflow(self, workflow: Workflow) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflows (id, name, body, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name, body = excluded.body, updated_at = excluded.updated_at
            """,
            workflow.id,
            workflow.name,
            workflow.model_dump_json(),
            workflow.updated_at.isoformat(),
        )

    async def delete_workflow(self, workflow_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM workflows WHERE id = ?", workflow_id
        )
        return deleted > 0

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT body FROM workflows ORDER BY name"
        )
        return [Workflow.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Runs
    async def get_run(self, run_id: str) -> Run | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT body FROM runs WHERE id = ?", run_id
        )
        return Run.model_validate_json(row["body"]) if row else None

    async def save_run(self, run: Run) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO runs (id, workflow_id, status, body, created_at) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET status = excluded.status, body = excluded.body
            """,
            run.id,
            run.workflow_id,
            run.status.value,
            run.model_dump_json(),
            run.created_at.isoformat(),
        )

    async def delete_run(self, run_id: str) -> bool:
        await asyncio.to_thread(
            self._execute, "DELETE FROM trace_events WHERE run_id = ?", run_id
        )
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM runs WHERE id = ?", run_id
        )
        return deleted > 0

    async def list_runs(
        self, workflow_id: Optional[str] = None, status: Optional[RunStatus] = None
    ) -> list[Run]:
        query = "SELECT body FROM runs WHERE 1 = 1"
        params: list[Any] = []
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        if status is not None:
            query += " AND status = ?"
            params.append(RunStatus(status).value)
        query += " ORDER BY created_at DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [Run.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    # Trace
    async def append_trace(self, event: TraceEvent) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO trace_events (id, run_id, body) VALUES (?, ?, ?)",
            event.id,
            event.run_id,
            event.model_dump_json(),
        )

    async def list_trace(self, run_id: str) -> list[TraceEvent]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM trace_events WHERE run_id = ? ORDER BY seq",
            run_id,
        )
        return [TraceEvent.model_validate_json(r["body"]) for r in rows]
