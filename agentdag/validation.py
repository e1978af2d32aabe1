"""Structural validation of workflow definitions."""

from __future__ import annotations

from collections import Counter
from typing import Optional

from pydantic import BaseModel, Field

from .constants import DEFAULT_LARGE_WORKFLOW_THRESHOLD
from .contracts import Workflow


class ValidationReport(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def validate(
    workflow: Workflow,
    large_workflow_threshold: int = DEFAULT_LARGE_WORKFLOW_THRESHOLD,
) -> ValidationReport:
    """Check ``workflow`` for structural problems.

    Errors make the workflow unrunnable: missing identity, no steps, unknown
    or duplicated step ids, and dependency cycles. Warnings are surfaced but
    do not block execution.
    """

    errors: list[str] = []
    warnings: list[str] = []

    if not workflow.id:
        errors.append("Workflow ID is required")
    if not workflow.name:
        errors.append("Workflow name is required")
    if not workflow.steps:
        errors.append("Workflow must have at least one step")

    known = set(workflow.step_ids)
    for index, step in enumerate(workflow.steps):
        if not step.id:
            errors.append(f"Step at position {index} missing ID")
            continue
        if not step.agent:
            errors.append(f"Step {step.id} missing agent")
        if step.task is None:
            warnings.append(f"Step {step.id} missing task")
        for dep in step.depends_on:
            if dep not in known:
                errors.append(f"Step {step.id} depends on unknown step {dep}")

    duplicates = [sid for sid, n in Counter(workflow.step_ids).items() if sid and n > 1]
    for sid in duplicates:
        errors.append(f"Duplicate step ID {sid}")

    cycle_at = find_cycle(workflow)
    if cycle_at is not None:
        errors.append(f"Circular dependency detected at step {cycle_at}")

    if len(workflow.steps) > large_workflow_threshold:
        warnings.append(
            f"Workflow has {len(workflow.steps)} steps "
            f"(more than {large_workflow_threshold})"
        )
    if len(workflow.steps) > 1 and all(step.parallel for step in workflow.steps):
        warnings.append(
            "Every step is marked parallel; dependencies may be missing"
        )

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings)


def find_cycle(workflow: Workflow) -> Optional[str]:
    """Return the step id at which a dependency cycle closes, if any."""

    graph = {step.id: step.depends_on for step in workflow.steps}
    visited: set[str] = set()
    stack: set[str] = set()

    def visit(step_id: str) -> Optional[str]:
        if step_id in stack:
            return step_id
        if step_id in visited or step_id not in graph:
            return None
        visited.add(step_id)
        stack.add(step_id)
        for dep in graph[step_id]:
            found = visit(dep)
            if found is not None:
                return found
        stack.discard(step_id)
        return None

    for step_id in graph:
        if step_id not in visited:
            found = visit(step_id)
            if found is not None:
                return found
    return None
