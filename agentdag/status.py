"""Read-only digests of execution records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .constants import (
    ESTIMATED_COST_PER_TOKEN,
    ESTIMATED_STEP_DURATION_MS,
    ESTIMATED_TOKENS_PER_STEP,
)
from .contracts import Workflow
from .models import Execution, ExecutionStatus, StepStatus


class StepFailure(BaseModel):
    step_id: str
    attempts: int
    error: Optional[str] = None


class ExecutionSummary(BaseModel):
    """Compact view of an execution for status endpoints and the CLI."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: int
    total_steps: int
    completed_steps: int
    counts: dict[StepStatus, int] = Field(default_factory=dict)
    failures: list[StepFailure] = Field(default_factory=list)
    total_tokens: int = 0
    error: Optional[str] = None

    @property
    def progress(self) -> float:
        if not self.total_steps:
            return 1.0
        return self.completed_steps / self.total_steps


def summarize(execution: Execution, now: Optional[datetime] = None) -> ExecutionSummary:
    """Summarise ``execution``.

    ``completed_steps`` counts every step in a terminal state; the duration
    of a running execution is measured up to ``now``.
    """

    counts = {status: 0 for status in StepStatus}
    for state in execution.steps.values():
        counts[state.status] += 1

    end = execution.completed_at or now or datetime.now(timezone.utc)
    failures = [
        StepFailure(step_id=step_id, attempts=state.attempts, error=state.error)
        for step_id, state in execution.steps.items()
        if state.status == StepStatus.FAILED
    ]
    snapshot = execution.context_snapshot
    return ExecutionSummary(
        execution_id=execution.id,
        workflow_id=execution.workflow_id,
        status=execution.status,
        started_at=execution.started_at,
        completed_at=execution.completed_at,
        duration_ms=max(0, int((end - execution.started_at).total_seconds() * 1000)),
        total_steps=len(execution.steps),
        completed_steps=sum(n for s, n in counts.items() if s.is_terminal),
        counts=counts,
        failures=failures,
        total_tokens=snapshot.metadata.total_tokens if snapshot else 0,
        error=execution.error,
    )


class ExecutionEstimate(BaseModel):
    """Rough resource forecast for running a workflow once."""

    workflow_id: str
    total_tokens: int
    duration_ms: int
    cost: float
    agents: list[str] = Field(default_factory=list)


def estimate(workflow: Workflow) -> ExecutionEstimate:
    """Estimate the tokens, serial duration and cost of ``workflow``.

    Every step is charged a flat token and time allowance; ``agents`` lists
    the distinct agents in first-use order.
    """

    steps = len(workflow.steps)
    tokens = steps * ESTIMATED_TOKENS_PER_STEP
    return ExecutionEstimate(
        workflow_id=workflow.id,
        total_tokens=tokens,
        duration_ms=steps * ESTIMATED_STEP_DURATION_MS,
        cost=round(tokens * ESTIMATED_COST_PER_TOKEN, 4),
        agents=list(dict.fromkeys(step.agent for step in workflow.steps)),
    )
