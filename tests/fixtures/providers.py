"""Stub capability providers shared by the test-suite."""

from __future__ import annotations

import asyncio
from typing import Any

from agentdag.contracts import RetryPolicy, Step, Workflow, WorkflowConfig
from agentdag.providers import CapabilityProvider, ProviderResult


class EchoProvider(CapabilityProvider):
    """Return the task back, reporting a fixed token cost."""

    def __init__(self, tokens: int = 10, delay: float = 0.0) -> None:
        self.tokens = tokens
        self.delay = delay
        self.calls: list[Any] = []

    async def invoke(self, agent_id, task, context, signal):
        self.calls.append(task)
        if self.delay:
            await asyncio.sleep(self.delay)
        return ProviderResult(output={"echo": task}, tokens_used=self.tokens)


class FailingProvider(CapabilityProvider):
    """Always report an error."""

    def __init__(self, tokens: int = 0) -> None:
        self.tokens = tokens
        self.calls = 0

    async def invoke(self, agent_id, task, context, signal):
        self.calls += 1
        return ProviderResult(error="boom", tokens_used=self.tokens)


class FlakyProvider(CapabilityProvider):
    """Raise for the first ``failures`` calls, then succeed."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def invoke(self, agent_id, task, context, signal):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")
        return ProviderResult(output="recovered", tokens_used=1)


class SlowProvider(CapabilityProvider):
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self.calls = 0

    async def invoke(self, agent_id, task, context, signal):
        self.calls += 1
        await asyncio.sleep(self.seconds)
        return ProviderResult(output="late")


class ProbeProvider(CapabilityProvider):
    """Track start/end order and the peak number of concurrent calls.

    The task is used as the label recorded in ``events``.
    """

    def __init__(self, delay: float = 0.02, tokens: int = 1) -> None:
        self.delay = delay
        self.tokens = tokens
        self.active = 0
        self.max_active = 0
        self.events: list[tuple[str, Any]] = []

    async def invoke(self, agent_id, task, context, signal):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.events.append(("start", task))
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        self.events.append(("end", task))
        return ProviderResult(output=task, tokens_used=self.tokens)


class GatedProvider(CapabilityProvider):
    """Block until ``release`` is set."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def invoke(self, agent_id, task, context, signal):
        self.started.set()
        self.calls += 1
        await self.release.wait()
        return ProviderResult(output="released")


def make_step(step_id: str, agent: str = "echo", depends_on=(), **kwargs) -> Step:
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=1, delay=0))
    kwargs.setdefault("task", step_id)
    return Step(id=step_id, name=step_id, agent=agent, depends_on=depends_on, **kwargs)


def make_workflow(*steps: Step, workflow_id: str = "wf", **config) -> Workflow:
    return Workflow(
        id=workflow_id,
        name=workflow_id,
        steps=steps,
        config=WorkflowConfig(**config),
    )


PROVIDERS = {
    "echo": EchoProvider(tokens=3),
    "fail": FailingProvider(),
}
