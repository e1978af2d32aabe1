"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from typing import Iterable, Optional, Protocol, Union

from ..models import Execution, ExecutionStatus

StatusFilter = Optional[Union[ExecutionStatus, str]]


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends.

    Backends only need last-write-wins semantics per execution id.
    """

    async def save_execution(self, execution: Execution) -> None:
        """Insert or replace the record for ``execution.id``."""

    async def load_execution(self, execution_id: str) -> Execution | None:
        """Retrieve an execution by id."""

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: StatusFilter = None,
        limit: Optional[int] = None,
    ) -> list[Execution]:
        """Return persisted executions ordered by start time.

        ``limit`` keeps only the first ``limit`` matches.
        """


def matches(
    execution: Execution, workflow_id: Optional[str], status: StatusFilter
) -> bool:
    """Shared filter predicate for backends that filter in Python."""
    if workflow_id is not None and execution.workflow_id != workflow_id:
        return False
    if status is not None and execution.status != ExecutionStatus(status):
        return False
    return True


def select(
    executions: Iterable[Execution],
    workflow_id: Optional[str],
    status: StatusFilter,
    limit: Optional[int],
) -> list[Execution]:
    """Filter, order by start time and truncate in Python."""
    selected = sorted(
        (e for e in executions if matches(e, workflow_id, status)),
        key=lambda e: e.started_at,
    )
    if limit is not None:
        selected = selected[:limit]
    return selected
