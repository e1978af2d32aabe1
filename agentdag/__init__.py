"""agentdag: DAG workflow orchestration over pluggable agents."""

from .context import ContextRecorder, ExecutionContext
from .contracts import BackoffStrategy, RetryPolicy, Step, Workflow, WorkflowConfig
from .engine import WorkflowEngine
from .errors import (
    AgentDagError,
    AgentResolutionError,
    ExecutionNotFoundError,
    FatalStepFailure,
    NotFoundError,
    SkippedDependency,
    StepExecutionError,
    StepTimeoutError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from .executor import StepExecutor
from .models import Execution, ExecutionResult, ExecutionStatus, StepResult, StepStatus
from .persistence import get_repository
from .providers import AgentRegistry, CapabilityProvider, ProviderResult
from .scheduler import Scheduler
from .validation import validate

__version__ = "0.1.0"
__all__ = [
    "AgentDagError",
    "AgentRegistry",
    "AgentResolutionError",
    "BackoffStrategy",
    "CapabilityProvider",
    "ContextRecorder",
    "Execution",
    "ExecutionContext",
    "ExecutionNotFoundError",
    "ExecutionResult",
    "ExecutionStatus",
    "FatalStepFailure",
    "NotFoundError",
    "ProviderResult",
    "RetryPolicy",
    "Scheduler",
    "SkippedDependency",
    "Step",
    "StepExecutionError",
    "StepExecutor",
    "StepResult",
    "StepStatus",
    "StepTimeoutError",
    "Workflow",
    "WorkflowConfig",
    "WorkflowEngine",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
    "get_repository",
    "validate",
]
