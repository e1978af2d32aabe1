"""Workflow definition contracts.

A :class:`Workflow` is an immutable description of a DAG of :class:`Step`
objects. Definitions may be written in either snake_case or the camelCase
layout (``dependsOn``, ``maxConcurrent``, ``retryPolicy``) used by workflow
files.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_RETRY_DELAY_MS,
)


class _Definition(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BackoffStrategy(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryPolicy(_Definition):
    """How often and how patiently a step is retried."""

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    delay: int = Field(default=DEFAULT_RETRY_DELAY_MS, ge=0, description="Milliseconds")
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL


class WorkflowConfig(_Definition):
    """Execution settings for a workflow."""

    max_concurrent: int = Field(default=DEFAULT_MAX_CONCURRENT, ge=1)
    fail_fast: bool = False
    save_state: bool = True
    token_budget: Optional[int] = Field(default=None, ge=0)


class Step(_Definition):
    """Defines one node of the workflow DAG."""

    id: str = ""
    name: str = ""
    agent: str = ""
    task: Any = None
    depends_on: tuple[str, ...] = Field(default_factory=tuple)
    parallel: bool = False
    optional: bool = False
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    timeout: Optional[int] = Field(default=None, gt=0, description="Milliseconds")

    @field_validator("depends_on", mode="before")
    @classmethod
    def _unique_dependencies(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        return tuple(dict.fromkeys(value))


class Workflow(_Definition):
    """Immutable description of a DAG of steps."""

    id: str = ""
    name: str = ""
    description: Optional[str] = None
    version: str = "1.0.0"
    steps: tuple[Step, ...] = Field(default_factory=tuple)
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)

    @property
    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[Step]:
        """Return the step with ``step_id`` or ``None``."""
        return next((step for step in self.steps if step.id == step_id), None)
