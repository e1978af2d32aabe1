"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ..models import Execution, ExecutionStatus
from .repository import ExecutionRepository, StatusFilter


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                document JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def save_execution(self, execution: Execution) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO executions (id, workflow_id, status, started_at, completed_at, document)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    completed_at = EXCLUDED.completed_at,
                    document = EXCLUDED.document
                """,
                execution.id,
                execution.workflow_id,
                execution.status.value,
                execution.started_at,
                execution.completed_at,
                execution.model_dump_json(),
            )
        finally:
            await conn.close()

    async def load_execution(self, execution_id: str) -> Execution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document::text AS document FROM executions WHERE id = $1",
                execution_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return Execution.model_validate_json(row["document"])

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: StatusFilter = None,
        limit: Optional[int] = None,
    ) -> list[Execution]:
        clauses: list[str] = []
        params: list[Any] = []
        if workflow_id is not None:
            params.append(workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        if status is not None:
            params.append(ExecutionStatus(status).value)
            clauses.append(f"status = ${len(params)}")
        query = "SELECT document::text AS document FROM executions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY started_at"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [Execution.model_validate_json(r["document"]) for r in rows]
