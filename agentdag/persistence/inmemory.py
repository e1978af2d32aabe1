"""In-memory implementation of the execution repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..models import Execution
from .repository import ExecutionRepository, StatusFilter, select


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, Execution] = {}

    async def save_execution(self, execution: Execution) -> None:
        self._executions[execution.id] = execution.model_copy(deep=True)

    async def load_execution(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: StatusFilter = None,
        limit: Optional[int] = None,
    ) -> list[Execution]:
        selected = select(self._executions.values(), workflow_id, status, limit)
        return [execution.model_copy(deep=True) for execution in selected]
