"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ..contracts import Run, RunStatus, TraceEvent, Workflow
from .repository import WorkflowRepository


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflows, runs and traces using PostgreSQL."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            self._dsn, min_size=self._min_size, max_size=self._max_size
        )
        async with self._pool.acquire() as conn:
            await self._ensure_schema(conn)

    async def close(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            await pool.close()

    async def _acquire(self) -> asyncpg.Pool:
        if self._pool is None:
            await self.connect()
        return self._pool

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                body JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                body JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trace_events (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL,
                run_id TEXT NOT NULL,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_trace_events_run ON trace_events (run_id, seq)"
        )

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        pool = await self._acquire()
        body = await pool.fetchval("SELECT body::text FROM workflows WHERE id = $1", workflow_id)
        return Workflow.model_validate_json(body) if body else None

    async def save_workflow(self, workflow: Workflow) -> None:
        pool = await self._acquire()
        await pool.execute(
            """
            INSERT INTO workflows (id, name, body, updated_at) VALUES ($1, $2, $3::jsonb, $4)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name, body = EXCLUDED.body, updated_at = EXCLUDED.updated_at
            """,
            workflow.id,
            workflow.name,
            workflow.model_dump_json(),
            workflow.updated_at,
        )

    async def delete_workflow(self, workflow_id: str) -> bool:
        pool = await self._acquire()
        status = await pool.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        return status != "DELETE 0"

    async def list_workflows(self) -> list[Workflow]:
        pool = await self._acquire()
        rows = await pool.fetch("SELECT body::text AS body FROM workflows ORDER BY name")
        return [Workflow.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def get_run(self, run_id: str) -> Run | None:
        pool = await self._acquire()
        body = await pool.fetchval("SELECT body::text FROM runs WHERE id = $1", run_id)
        return Run.model_validate_json(body) if body else None

    async def save_run(self, run: Run) -> None:
        pool = await self._acquire()
        await pool.execute(
            """
            INSERT INTO runs (id, workflow_id, status, body, created_at)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            ON CONFLICT (id) DO UPDATE SET status = EXCLUDED.status, body = EXCLUDED.body
            """,
            run.id,
            run.workflow_id,
            run.status.value,
            run.model_dump_json(),
            run.created_at,
        )

    async def delete_run(self, run_id: str) -> bool:
        pool = await self._acquire()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM trace_events WHERE run_id = $1", run_id)
                status = await conn.execute("DELETE FROM runs WHERE id = $1", run_id)
        return status != "DELETE 0"

    async def list_runs(
        self, workflow_id: Optional[str] = None, status: Optional[RunStatus] = None
    ) -> list[Run]:
        pool = await self._acquire()
        clauses: list[str] = []
        params: list[Any] = []
        if workflow_id is not None:
            params.append(workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        if status is not None:
            params.append(RunStatus(status).value)
            clauses.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await pool.fetch(
            f"SELECT body::text AS body FROM runs {where} ORDER BY created_at DESC", *params
        )
        return [Run.model_validate_json(r["body"]) for r in rows]

    # ------------------------------------------------------------------
    async def append_trace(self, event: TraceEvent) -> None:
        pool = await self._acquire()
        await pool.execute(
            "INSERT INTO trace_events (id, run_id, body) VALUES ($1, $2, $3::jsonb)",
            event.id,
            event.run_id,
            event.model_dump_json(),
        )

    async def list_trace(self, run_id: str) -> list[TraceEvent]:
        pool = await self._acquire()
        rows = await pool.fetch(
            "SELECT body::text AS body FROM trace_events WHERE run_id = $1 ORDER BY seq",
            run_id,
        )
        return [TraceEvent.model_validate_json(r["body"]) for r in rows]
