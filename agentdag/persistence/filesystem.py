"""JSON-file implementation of the execution repository."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from ..models import Execution
from .repository import ExecutionRepository, StatusFilter, select

logger = logging.getLogger(__name__)


class FileExecutionRepository(ExecutionRepository):
    """Keep one ``<execution_id>.json`` document per execution in a directory."""

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, execution_id: str) -> Path:
        return self.state_dir / f"{execution_id}.json"

    def _write(self, execution: Execution) -> None:
        path = self._path(execution.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(execution.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def _read(self, path: Path) -> Execution:
        return Execution.model_validate_json(path.read_text(encoding="utf-8"))

    def _read_all(self) -> list[Execution]:
        executions = []
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                executions.append(self._read(path))
            except ValueError as exc:
                logger.warning(f"Ignoring unreadable execution file {path}: {exc}")
        return executions

    async def save_execution(self, execution: Execution) -> None:
        await asyncio.to_thread(self._write, execution)

    async def load_execution(self, execution_id: str) -> Execution | None:
        path = self._path(execution_id)
        if not path.exists():
            return None
        return await asyncio.to_thread(self._read, path)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: StatusFilter = None,
        limit: Optional[int] = None,
    ) -> list[Execution]:
        executions = await asyncio.to_thread(self._read_all)
        return select(executions, workflow_id, status, limit)
