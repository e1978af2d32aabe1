"""Capability provider interface."""

from __future__ import annotations

import abc
import asyncio
import time
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..context import ContextRecorder


class ProviderResult(BaseModel):
    """What a provider hands back for one invocation."""

    output: Any = None
    tokens_used: int = Field(default=0, ge=0)
    error: Optional[str] = None


class CancellationSignal:
    """Cancellation and deadline information passed with every invocation."""

    def __init__(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._cancel_event = cancel_event or asyncio.Event()
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the attempt times out, ``None`` if unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    async def wait(self) -> None:
        await self._cancel_event.wait()


class CapabilityProvider(metaclass=abc.ABCMeta):
    """Performs the work of a step."""

    @abc.abstractmethod
    async def invoke(
        self,
        agent_id: str,
        task: Any,
        context: "ContextRecorder",
        signal: CancellationSignal,
    ) -> ProviderResult:
        """Run ``task`` and report its output and token cost.

        Raising an exception or returning a result with ``error`` set both
        count as a failed attempt.
        """
        raise NotImplementedError
