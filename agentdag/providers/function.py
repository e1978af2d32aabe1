from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Callable

from .base import CancellationSignal, CapabilityProvider, ProviderResult

if TYPE_CHECKING:
    from ..context import ContextRecorder


class FunctionProvider(CapabilityProvider):
    """Adapt a callable ``fn(task, context)`` into a provider.

    Coroutine functions are awaited; plain functions run in a worker thread.
    Anything returned that is not a :class:`ProviderResult` becomes its
    ``output``.
    """

    def __init__(self, fn: Callable[..., Any]) -> None:
        self.fn = fn
        self._is_async = inspect.iscoroutinefunction(fn)

    async def invoke(
        self,
        agent_id: str,
        task: Any,
        context: "ContextRecorder",
        signal: CancellationSignal,
    ) -> ProviderResult:
        if self._is_async:
            value = await self.fn(task, context)
        else:
            value = await asyncio.to_thread(self.fn, task, context)
        if isinstance(value, ProviderResult):
            return value
        return ProviderResult(output=value)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"FunctionProvider({getattr(self.fn, '__name__', self.fn)!r})"
