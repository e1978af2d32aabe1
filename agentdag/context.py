"""Shared execution context.

The :class:`ExecutionContext` accumulates step outputs, an append-only
history and a resource ledger for one execution. Step executions never see
the context itself; they get a :class:`ContextRecorder` that can only append
history and add tokens.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContextEntry(BaseModel):
    """One auditable record of a step attempt."""

    step_id: str
    timestamp: datetime = Field(default_factory=_now)
    summary: str
    attempt: int = 1
    tokens_used: int = Field(default=0, ge=0)


class ContextMetadata(BaseModel):
    """Running resource-usage ledger."""

    created: datetime = Field(default_factory=_now)
    updated: datetime = Field(default_factory=_now)
    total_tokens: int = Field(default=0, ge=0)
    entry_count: int = 0
    size: int = 0


class ExecutionContext(BaseModel):
    """Mutable accumulator shared by every step of one execution."""

    id: str = Field(default_factory=lambda: f"ctx-{uuid.uuid4()}")
    execution_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
    history: list[ContextEntry] = Field(default_factory=list)
    metadata: ContextMetadata = Field(default_factory=ContextMetadata)

    def append_history(self, entry: ContextEntry) -> None:
        self.history.append(entry)
        self.metadata.entry_count = len(self.history)
        self._touch()

    def add_tokens(self, tokens: int) -> None:
        if tokens < 0:
            raise ValueError("token counters can only grow")
        self.metadata.total_tokens += tokens
        self._touch()

    def set_data(self, key: str, value: Any) -> None:
        self.data[key] = value
        self._touch()

    def merge(self, other: "ExecutionContext") -> None:
        """Copy ``other``'s data into this context, overwriting shared keys."""
        self.data = {**self.data, **other.data}
        self._touch()

    def snapshot(self) -> "ExecutionContext":
        return self.model_copy(deep=True)

    def _touch(self) -> None:
        self.metadata.updated = _now()
        self.metadata.size = len(
            json.dumps(
                {
                    "data": self.data,
                    "history": [e.model_dump(mode="json") for e in self.history],
                },
                default=str,
            )
        )


class ContextRecorder:
    """Append-only view of an :class:`ExecutionContext`.

    ``is_open`` is consulted before every write; once it returns ``False``
    (the owning execution was cancelled) writes are dropped.
    """

    def __init__(
        self,
        context: ExecutionContext,
        is_open: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._context = context
        self._is_open = is_open or (lambda: True)

    @property
    def context_id(self) -> str:
        return self._context.id

    @property
    def execution_id(self) -> Optional[str]:
        return self._context.execution_id

    @property
    def data(self) -> Mapping[str, Any]:
        return MappingProxyType(self._context.data)

    @property
    def total_tokens(self) -> int:
        return self._context.metadata.total_tokens

    def append_history(
        self, step_id: str, summary: str, attempt: int = 1, tokens_used: int = 0
    ) -> bool:
        """Record an entry; returns ``False`` when the write was dropped."""
        if not self._is_open():
            logger.debug(f"Dropping history entry for {step_id}: context closed")
            return False
        self._context.append_history(
            ContextEntry(
                step_id=step_id,
                summary=summary,
                attempt=attempt,
                tokens_used=tokens_used,
            )
        )
        return True

    def add_tokens(self, tokens: int) -> bool:
        if not self._is_open():
            return False
        self._context.add_tokens(tokens)
        return True
