from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from .context import ExecutionContext
from .contracts import Workflow
from .errors import FatalStepFailure


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class StepState(BaseModel):
    """Persisted progress of one step within an execution."""

    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    output: Any = None
    tokens_used: int = 0


class Execution(BaseModel):
    """Durable, queryable record of one workflow run."""

    id: str = Field(default_factory=lambda: f"exec-{uuid.uuid4()}")
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    steps: dict[str, StepState] = Field(default_factory=dict)
    context_snapshot: Optional[ExecutionContext] = None
    started_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def for_workflow(cls, workflow: Workflow) -> "Execution":
        """Create a record with every step pending."""
        return cls(
            workflow_id=workflow.id,
            steps={step.id: StepState() for step in workflow.steps},
        )

    def steps_with_status(self, *statuses: StepStatus) -> list[str]:
        return [sid for sid, state in self.steps.items() if state.status in statuses]


class StepResult(BaseModel):
    """Outcome of running one step to completion."""

    step_id: str
    status: StepStatus
    output: Any = None
    error: Optional[str] = None
    attempts: int = 0
    tokens_used: int = 0
    duration_ms: int = 0
    fatal: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


class ExecutionResult(BaseModel):
    """Aggregate result returned by the scheduler."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    step_results: dict[str, StepResult] = Field(default_factory=dict)
    final_context: ExecutionContext
    error: Optional[str] = None

    @classmethod
    def from_execution(
        cls, execution: Execution, optional: Iterable[str] = ()
    ) -> "ExecutionResult":
        """Rebuild a result from a persisted record.

        ``optional`` names the steps whose failure is not fatal.
        """
        optional = set(optional)
        step_results = {}
        for step_id, state in execution.steps.items():
            duration = 0
            if state.started_at and state.ended_at:
                duration = int((state.ended_at - state.started_at).total_seconds() * 1000)
            step_results[step_id] = StepResult(
                step_id=step_id,
                status=state.status,
                output=state.output,
                error=state.error,
                attempts=state.attempts,
                tokens_used=state.tokens_used,
                duration_ms=max(0, duration),
                fatal=state.status == StepStatus.FAILED and step_id not in optional,
            )
        context = execution.context_snapshot or ExecutionContext(execution_id=execution.id)
        return cls(
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status,
            step_results=step_results,
            final_context=context,
            error=execution.error,
        )

    def raise_for_status(self) -> None:
        """Raise :class:`FatalStepFailure` for the first fatally failed step."""
        if self.status != ExecutionStatus.FAILED:
            return
        for result in self.step_results.values():
            if result.status == StepStatus.FAILED and result.fatal:
                raise FatalStepFailure(result.step_id, result.attempts, result.error)
        raise FatalStepFailure("*", 0, self.error)
