"""Ready-set scheduler for workflow DAGs.

One coordinator coroutine owns the :class:`~agentdag.models.Execution`
record and the :class:`~agentdag.context.ExecutionContext`. Steps run as
asyncio tasks and report attempts and completion back through a queue, so
every state transition is applied by the coordinator one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from .context import ContextRecorder, ExecutionContext
from .contracts import Step, Workflow
from .errors import FatalStepFailure, SkippedDependency, WorkflowValidationError
from .executor import AttemptEvent, AttemptRecord, AttemptStarted, StepExecutor
from .models import (
    Execution,
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    StepState,
    StepStatus,
)
from .persistence import ExecutionRepository
from .validation import validate

logger = logging.getLogger(__name__)

_CANCEL = object()

_WAITING = (StepStatus.PENDING, StepStatus.READY)
_IN_FLIGHT = (StepStatus.READY, StepStatus.RUNNING, StepStatus.RETRYING)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Run:
    """Coordinator-private state of one execution."""

    def __init__(
        self, workflow: Workflow, execution: Execution, context: ExecutionContext
    ) -> None:
        self.workflow = workflow
        self.steps = {step.id: step for step in workflow.steps}
        self.execution = execution
        self.context = context
        self.queue: asyncio.Queue[Union[AttemptEvent, StepResult, object]] = (
            asyncio.Queue()
        )
        self.cancel_event = asyncio.Event()
        self.running: dict[str, asyncio.Task] = {}
        self.durations: dict[str, int] = {}
        self.halted_reason: Optional[str] = None
        self.cancelled = False
        self.recorder = ContextRecorder(context, is_open=lambda: not self.cancelled)

    def state(self, step_id: str) -> StepState:
        return self.execution.steps[step_id]


class Scheduler:
    """Advance a workflow DAG to completion under a concurrency cap."""

    def __init__(
        self,
        executor: StepExecutor,
        repository: Optional[ExecutionRepository] = None,
        large_workflow_threshold: Optional[int] = None,
    ) -> None:
        self._executor = executor
        self._repository = repository
        self._large_workflow_threshold = large_workflow_threshold
        self._runs: dict[str, _Run] = {}

    # ------------------------------------------------------------------
    # Public API
    async def execute(
        self,
        workflow: Workflow,
        context: Optional[ExecutionContext] = None,
        execution: Optional[Execution] = None,
    ) -> ExecutionResult:
        """Run ``workflow`` and return the aggregate result.

        Passing a previously persisted ``execution`` resumes it: steps that
        already succeeded are never run again.
        """
        if self._large_workflow_threshold is None:
            report = validate(workflow)
        else:
            report = validate(workflow, self._large_workflow_threshold)
        if not report.valid:
            raise WorkflowValidationError(report.errors, workflow.id)
        for warning in report.warnings:
            logger.warning(f"Workflow {workflow.id}: {warning}")

        if execution is not None and execution.id in self._runs:
            raise ValueError(f"Execution {execution.id} is already running")

        if execution is None:
            execution = Execution.for_workflow(workflow)
            context = context or ExecutionContext()
        else:
            context = self._restore(workflow, execution, context)

        context.execution_id = execution.id
        execution.status = ExecutionStatus.RUNNING
        execution.completed_at = None
        execution.error = None

        run = _Run(workflow, execution, context)
        self._runs[execution.id] = run
        logger.info(f"Executing workflow {workflow.id} as {execution.id}")
        try:
            await self._save(run, force=True)
            await self._loop(run)
        finally:
            self._runs.pop(execution.id, None)
            for task in run.running.values():
                task.cancel()
        return await self._finish(run)

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation of an in-flight execution."""
        run = self._runs.get(execution_id)
        if run is None:
            return False
        run.queue.put_nowait(_CANCEL)
        return True

    def get_active(self, execution_id: str) -> Optional[Execution]:
        """Return a live copy of an in-flight execution record."""
        run = self._runs.get(execution_id)
        if run is None:
            return None
        execution = run.execution.model_copy(deep=True)
        execution.context_snapshot = run.context.snapshot()
        return execution

    def active_ids(self) -> list[str]:
        return list(self._runs)

    # ------------------------------------------------------------------
    # Coordinator loop
    async def _loop(self, run: _Run) -> None:
        while True:
            if run.halted_reason is None:
                skipped = self._propagate_skips(run)
                admitted = self._admit(run)
                if skipped or admitted:
                    await self._save(run)

            if not run.running:
                if self._cancel_pending(run):
                    await self._cancel(run)
                return

            event = await run.queue.get()
            if event is _CANCEL:
                await self._cancel(run)
                return
            if isinstance(event, AttemptStarted):
                self._on_attempt_started(run, event)
            elif isinstance(event, AttemptRecord):
                self._on_attempt(run, event)
            elif isinstance(event, StepResult):
                self._on_done(run, event)
            self._check_budget(run)
            await self._save(run)

    @staticmethod
    def _cancel_pending(run: _Run) -> bool:
        """Drain events left after the last step; report a queued cancel."""
        while not run.queue.empty():
            if run.queue.get_nowait() is _CANCEL:
                return True
        return False

    def _dependency_blocks(self, run: _Run, dep_id: str) -> Optional[str]:
        """Return why ``dep_id`` can never satisfy its dependants, if so."""
        status = run.state(dep_id).status
        if status not in (StepStatus.FAILED, StepStatus.SKIPPED):
            return None
        if run.steps[dep_id].optional:
            return None
        return status.value

    def _is_ready(self, run: _Run, step: Step) -> bool:
        for dep_id in step.depends_on:
            status = run.state(dep_id).status
            if status == StepStatus.SUCCEEDED:
                continue
            if run.steps[dep_id].optional and status in (
                StepStatus.FAILED,
                StepStatus.SKIPPED,
            ):
                continue
            return False
        return True

    def _propagate_skips(self, run: _Run) -> bool:
        changed = False
        progress = True
        while progress:
            progress = False
            for step in run.workflow.steps:
                state = run.state(step.id)
                if state.status not in _WAITING:
                    continue
                for dep_id in step.depends_on:
                    reason = self._dependency_blocks(run, dep_id)
                    if reason is None:
                        continue
                    skip = SkippedDependency(step.id, dep_id, reason)
                    self._skip(state, str(skip))
                    logger.info(f"Step {step.id} skipped: dependency {dep_id} {reason}")
                    progress = changed = True
                    break
        return changed

    def _admit(self, run: _Run) -> bool:
        free = run.workflow.config.max_concurrent - len(run.running)
        changed = False
        for step in run.workflow.steps:
            state = run.state(step.id)
            if state.status not in _WAITING or not self._is_ready(run, step):
                continue
            if free > 0:
                self._start(run, step)
                free -= 1
                changed = True
            elif state.status == StepStatus.PENDING:
                state.status = StepStatus.READY
                changed = True
        return changed

    def _start(self, run: _Run, step: Step) -> None:
        state = run.state(step.id)
        state.status = StepStatus.RUNNING
        state.started_at = _now()
        state.ended_at = None
        state.error = None
        run.running[step.id] = asyncio.create_task(
            self._run_step(run, step), name=f"{run.execution.id}:{step.id}"
        )
        logger.info(f"Dispatched step {step.id} to agent {step.agent}")

    async def _run_step(self, run: _Run, step: Step) -> None:
        try:
            result = await self._executor.run(
                step,
                run.recorder,
                cancel_event=run.cancel_event,
                on_attempt=run.queue.put_nowait,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(f"Unexpected error while running step {step.id}")
            result = StepResult(
                step_id=step.id,
                status=StepStatus.FAILED,
                error=f"{type(exc).__name__}: {exc}",
                fatal=not step.optional,
            )
        run.queue.put_nowait(result)

    # ------------------------------------------------------------------
    # Transitions
    @staticmethod
    def _on_attempt_started(run: _Run, event: AttemptStarted) -> None:
        state = run.state(event.step_id)
        if state.status == StepStatus.RETRYING:
            state.status = StepStatus.RUNNING

    def _on_attempt(self, run: _Run, record: AttemptRecord) -> None:
        state = run.state(record.step_id)
        state.attempts = record.attempt
        state.tokens_used += record.tokens_used
        if not record.succeeded:
            state.error = record.error
            if record.will_retry:
                state.status = StepStatus.RETRYING

    def _on_done(self, run: _Run, result: StepResult) -> None:
        run.running.pop(result.step_id, None)
        run.durations[result.step_id] = result.duration_ms

        state = run.state(result.step_id)
        state.status = result.status
        state.attempts = result.attempts
        state.tokens_used = result.tokens_used
        state.output = result.output
        state.error = result.error
        state.ended_at = _now()

        if result.succeeded:
            run.context.set_data(result.step_id, result.output)
            return

        if not result.fatal:
            logger.warning(
                f"Optional step {result.step_id} failed after {result.attempts} attempt(s)"
            )
            return

        failure = FatalStepFailure(result.step_id, result.attempts, result.error)
        logger.error(str(failure))
        if run.workflow.config.fail_fast and run.halted_reason is None:
            self._halt(run, f"fail-fast after step {result.step_id} failed")

    def _check_budget(self, run: _Run) -> None:
        budget = run.workflow.config.token_budget
        used = run.context.metadata.total_tokens
        if budget is None or used <= budget or run.halted_reason is not None:
            return
        self._halt(run, f"token budget exceeded ({used} > {budget})")

    def _halt(self, run: _Run, reason: str) -> None:
        run.halted_reason = reason
        for step_id in run.execution.steps_with_status(*_WAITING):
            self._skip(run.state(step_id), reason)
        logger.warning(f"Execution {run.execution.id} halted: {reason}")

    async def _cancel(self, run: _Run) -> None:
        run.cancelled = True
        run.cancel_event.set()
        tasks = list(run.running.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        run.running.clear()
        for state in run.execution.steps.values():
            if not state.status.is_terminal:
                self._skip(state, "execution cancelled")
        logger.info(f"Execution {run.execution.id} cancelled")

    @staticmethod
    def _skip(state: StepState, reason: str) -> None:
        state.status = StepStatus.SKIPPED
        state.error = reason
        state.ended_at = _now()

    # ------------------------------------------------------------------
    # Bookkeeping
    def _restore(
        self,
        workflow: Workflow,
        execution: Execution,
        context: Optional[ExecutionContext],
    ) -> ExecutionContext:
        if context is None:
            if execution.context_snapshot is not None:
                context = execution.context_snapshot.model_copy(deep=True)
            else:
                context = ExecutionContext()
        for step in workflow.steps:
            state = execution.steps.setdefault(step.id, StepState())
            if state.status in _IN_FLIGHT:
                state.status = StepStatus.PENDING
                state.started_at = None
        logger.info(
            f"Resuming execution {execution.id}: "
            f"{len(execution.steps_with_status(StepStatus.SUCCEEDED))} step(s) already succeeded"
        )
        return context

    async def _save(self, run: _Run, force: bool = False) -> None:
        if self._repository is None:
            return
        if not force and not run.workflow.config.save_state:
            return
        run.execution.context_snapshot = run.context.snapshot()
        await self._repository.save_execution(run.execution)

    async def _finish(self, run: _Run) -> ExecutionResult:
        execution = run.execution
        fatal = [
            step.id
            for step in run.workflow.steps
            if run.state(step.id).status == StepStatus.FAILED and not step.optional
        ]

        if run.cancelled:
            execution.status = ExecutionStatus.CANCELLED
            execution.error = "execution cancelled"
        elif fatal:
            execution.status = ExecutionStatus.FAILED
            first = run.state(fatal[0])
            execution.error = str(
                FatalStepFailure(fatal[0], first.attempts, first.error)
            )
        elif run.halted_reason is not None:
            execution.status = ExecutionStatus.FAILED
            execution.error = run.halted_reason
        else:
            execution.status = ExecutionStatus.COMPLETED
        execution.completed_at = _now()

        await self._save(run, force=True)
        logger.info(f"Execution {execution.id} finished with status {execution.status.value}")

        step_results = {
            step.id: self._step_result(run, step) for step in run.workflow.steps
        }
        return ExecutionResult(
            execution_id=execution.id,
            workflow_id=run.workflow.id,
            status=execution.status,
            step_results=step_results,
            final_context=run.context,
            error=execution.error,
        )

    @staticmethod
    def _step_result(run: _Run, step: Step) -> StepResult:
        state = run.state(step.id)
        return StepResult(
            step_id=step.id,
            status=state.status,
            output=state.output,
            error=state.error,
            attempts=state.attempts,
            tokens_used=state.tokens_used,
            duration_ms=run.durations.get(step.id, 0),
            fatal=state.status == StepStatus.FAILED and not step.optional,
        )
