"""Workflow engine: the entry point used by the CLI and library callers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .config import EngineDefaults
from .context import ExecutionContext
from .contracts import Workflow
from .errors import (
    ExecutionNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from .executor import StepExecutor
from .loader import load_workflow_file, workflow_from_mapping
from .models import Execution, ExecutionResult
from .persistence import ExecutionRepository
from .persistence.repository import StatusFilter
from .providers import AgentRegistry
from .scheduler import Scheduler
from .status import ExecutionEstimate, ExecutionSummary, estimate, summarize
from .validation import ValidationReport, validate

logger = logging.getLogger(__name__)

InitialContext = Union[ExecutionContext, Mapping[str, Any], None]


class WorkflowEngine:
    """Owns the agent registry, the execution store and loaded workflows.

    Construct one per process and pass it to whatever needs to run
    workflows.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        repository: Optional[ExecutionRepository] = None,
        defaults: Optional[EngineDefaults] = None,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.defaults = defaults or EngineDefaults()
        self._workflows: Dict[str, Workflow] = {}
        self._scheduler = Scheduler(
            StepExecutor(registry),
            repository,
            large_workflow_threshold=self.defaults.large_workflow_threshold,
        )
        self._background: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Workflow definitions
    def load_workflow(
        self, workflow: Union[Workflow, Mapping[str, Any]]
    ) -> ValidationReport:
        """Validate and register ``workflow``.

        Raises:
            WorkflowValidationError: If the definition is structurally invalid.
        """
        if not isinstance(workflow, Workflow):
            workflow = workflow_from_mapping(workflow, self.defaults)
        report = validate(workflow, self.defaults.large_workflow_threshold)
        if not report.valid:
            raise WorkflowValidationError(report.errors, workflow.id)
        for warning in report.warnings:
            logger.warning(f"Workflow {workflow.id}: {warning}")

        unknown = sorted({s.agent for s in workflow.steps if s.agent not in self.registry})
        if unknown:
            logger.warning(
                f"Workflow {workflow.id} references unregistered agents: {', '.join(unknown)}"
            )
        self._workflows[workflow.id] = workflow
        logger.info(f"Loaded workflow {workflow.id} ({len(workflow.steps)} steps)")
        return report

    def load_workflow_file(self, path: Union[str, Path]) -> Workflow:
        workflow = load_workflow_file(path, self.defaults)
        self.load_workflow(workflow)
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(workflow_id) from None

    def list_workflows(self) -> list[Workflow]:
        return list(self._workflows.values())

    def estimate(self, workflow_id: str) -> ExecutionEstimate:
        return estimate(self.get_workflow(workflow_id))

    # ------------------------------------------------------------------
    # Execution
    async def execute(
        self, workflow_id: str, initial_context: InitialContext = None
    ) -> ExecutionResult:
        """Run a loaded workflow to completion."""
        workflow = self.get_workflow(workflow_id)
        return await self._scheduler.execute(workflow, _as_context(initial_context))

    async def submit(
        self, workflow_id: str, initial_context: InitialContext = None
    ) -> str:
        """Start a workflow in the background and return its execution id."""
        workflow = self.get_workflow(workflow_id)
        execution = Execution.for_workflow(workflow)
        context = _as_context(initial_context)
        task = asyncio.create_task(
            self._scheduler.execute(workflow, context, execution),
            name=f"agentdag:{execution.id}",
        )
        self._background[execution.id] = task
        task.add_done_callback(lambda t, eid=execution.id: self._forget(eid, t))
        # let the scheduler register the run before callers query or cancel it
        await asyncio.sleep(0)
        return execution.id

    async def wait(self, execution_id: str) -> ExecutionResult:
        """Wait for a submitted execution and return its result.

        Executions that already finished are rebuilt from the repository.
        """
        task = self._background.get(execution_id)
        if task is not None:
            return await task
        execution = await self._load(execution_id)
        if not execution.status.is_terminal:
            raise ValueError(f"Execution {execution_id} is not running in this process")
        workflow = self._workflows.get(execution.workflow_id)
        optional = [s.id for s in workflow.steps if s.optional] if workflow else []
        return ExecutionResult.from_execution(execution, optional)

    def _forget(self, execution_id: str, task: asyncio.Task) -> None:
        self._background.pop(execution_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background execution {execution_id} failed: {exc!r}")

    async def cancel(self, execution_id: str) -> bool:
        """Cancel an in-flight execution. Returns ``False`` if it is not running."""
        cancelled = self._scheduler.cancel(execution_id)
        if cancelled:
            logger.info(f"Cancellation requested for execution {execution_id}")
        return cancelled

    async def resume(self, execution_id: str) -> ExecutionResult:
        """Continue a persisted, unfinished execution.

        Steps that already succeeded are not run again.

        Raises:
            ValueError: If the execution is still running in this process or
                has already finished.
        """
        if execution_id in self._scheduler.active_ids():
            raise ValueError(f"Execution {execution_id} is still running")
        execution = await self._load(execution_id)
        if execution.status.is_terminal:
            raise ValueError(
                f"Execution {execution_id} already finished with status {execution.status.value}"
            )
        workflow = self.get_workflow(execution.workflow_id)
        return await self._scheduler.execute(workflow, execution=execution)

    # ------------------------------------------------------------------
    # Status
    async def get_execution_status(self, execution_id: str) -> Execution:
        active = self._scheduler.get_active(execution_id)
        if active is not None:
            return active
        return await self._load(execution_id)

    async def get_execution_summary(self, execution_id: str) -> ExecutionSummary:
        return summarize(await self.get_execution_status(execution_id))

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: StatusFilter = None,
        limit: Optional[int] = None,
    ) -> list[Execution]:
        if self.repository is None:
            return []
        return await self.repository.list_executions(workflow_id, status, limit)

    async def _load(self, execution_id: str) -> Execution:
        execution = None
        if self.repository is not None:
            execution = await self.repository.load_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution


def _as_context(initial: InitialContext) -> Optional[ExecutionContext]:
    if initial is None or isinstance(initial, ExecutionContext):
        return initial
    return ExecutionContext(data=dict(initial))
