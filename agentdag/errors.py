"""Exception hierarchy for workflow execution."""

from __future__ import annotations

from typing import Iterable, Optional


class AgentDagError(Exception):
    """Base class for all agentdag errors."""


class WorkflowValidationError(AgentDagError):
    """A workflow definition is malformed. Raised before anything runs."""

    def __init__(self, errors: Iterable[str], workflow_id: Optional[str] = None):
        self.errors = list(errors)
        self.workflow_id = workflow_id
        label = f"Workflow {workflow_id!r}" if workflow_id else "Workflow"
        super().__init__(f"{label} is invalid: {'; '.join(self.errors)}")


class NotFoundError(AgentDagError):
    """Requested entity does not exist."""


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class StepError(AgentDagError):
    """Error tied to a single workflow step."""

    def __init__(self, step_id: str, message: str, tokens_used: int = 0):
        self.step_id = step_id
        self.tokens_used = tokens_used
        super().__init__(message)


class AgentResolutionError(StepError):
    """The step's capability provider is not registered. Never retried."""

    def __init__(self, step_id: str, agent_id: str):
        self.agent_id = agent_id
        super().__init__(step_id, f"Agent {agent_id!r} not found for step {step_id!r}")


class StepTimeoutError(StepError):
    """A single attempt exceeded the step timeout."""

    def __init__(self, step_id: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(step_id, f"Step {step_id!r} timed out after {timeout_ms}ms")


class StepExecutionError(StepError):
    """The provider reported a failure for one attempt."""


class FatalStepFailure(StepError):
    """A non-optional step exhausted its retries."""

    def __init__(self, step_id: str, attempts: int, last_error: Optional[str]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            step_id,
            f"Step {step_id!r} failed after {attempts} attempt(s): {last_error}",
        )


class SkippedDependency(StepError):
    """Describes why a step was skipped. Not raised by the engine."""

    def __init__(self, step_id: str, dependency: str, reason: str = "failed"):
        self.dependency = dependency
        super().__init__(
            step_id, f"Skipped: dependency {dependency!r} {reason}"
        )
