"""Run pydantic-ai agents as workflow steps."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel
from pydantic_ai import Agent

from .base import CancellationSignal, CapabilityProvider, ProviderResult

if TYPE_CHECKING:
    from ..context import ContextRecorder

logger = logging.getLogger(__name__)


def task_to_prompt(task: Any) -> str:
    """Render a step task as a prompt string."""
    if task is None:
        return ""
    if isinstance(task, str):
        return task
    if isinstance(task, dict) and isinstance(task.get("prompt"), str):
        return task["prompt"]
    if isinstance(task, BaseModel):
        return task.model_dump_json()
    return json.dumps(task, default=str)


class PydanticAIProvider(CapabilityProvider):
    """Capability provider backed by a ``pydantic_ai.Agent``."""

    def __init__(self, agent: Agent, deps: Optional[Any] = None) -> None:
        self.agent = agent
        self.deps = deps

    async def invoke(
        self,
        agent_id: str,
        task: Any,
        context: "ContextRecorder",
        signal: CancellationSignal,
    ) -> ProviderResult:
        prompt = task_to_prompt(task)
        logger.debug(f"Running pydantic-ai agent {agent_id} with prompt: {prompt!r}")
        result = await self.agent.run(prompt, deps=self.deps)
        tokens = usage_tokens(result.usage)

        output = result.output
        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")
        return ProviderResult(output=output, tokens_used=tokens)


def usage_tokens(usage: Any) -> int:
    """Total tokens from a run's usage, whether exposed as a method or a property."""
    if callable(usage):
        usage = usage()
    total = getattr(usage, "total_tokens", None)
    if total is None:
        total = (getattr(usage, "input_tokens", 0) or 0) + (
            getattr(usage, "output_tokens", 0) or 0
        )
    return int(total or 0)
