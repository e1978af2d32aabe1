from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..models import Execution, ExecutionStatus
from ..persistence.repository import ExecutionRepository, StatusFilter
from .models import ExecutionRecord


class SQLModelExecutionRepository(ExecutionRepository):
    """Execution repository over any async SQLAlchemy URL.

    Examples: ``sqlite+aiosqlite:///state.db``,
    ``postgresql+asyncpg://user@host/db``.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine) as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def save_execution(self, execution: Execution) -> None:
        record = ExecutionRecord(
            id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            document=execution.model_dump(mode="json"),
        )
        async with self.session() as session:
            await session.merge(record)
            await session.commit()

    async def load_execution(self, execution_id: str) -> Execution | None:
        async with self.session() as session:
            record = await session.get(ExecutionRecord, execution_id)
            return Execution.model_validate(record.document) if record else None

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: StatusFilter = None,
        limit: Optional[int] = None,
    ) -> list[Execution]:
        statement = select(ExecutionRecord)
        if workflow_id is not None:
            statement = statement.where(ExecutionRecord.workflow_id == workflow_id)
        if status is not None:
            statement = statement.where(
                ExecutionRecord.status == ExecutionStatus(status).value
            )
        statement = statement.order_by(ExecutionRecord.started_at)
        if limit is not None:
            statement = statement.limit(limit)
        async with self.session() as session:
            result = await session.execute(statement)
            records = result.scalars().all()
        return [Execution.model_validate(r.document) for r in records]
