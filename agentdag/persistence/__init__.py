"""Persistence layer for execution state."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import AgentDagConfig, load_config
from ..constants import DATABASE_URL_ENV_VAR, DEFAULT_STATE_DIR
from .filesystem import FileExecutionRepository
from .inmemory import InMemoryExecutionRepository
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresExecutionRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresExecutionRepository = None  # type: ignore

logger = logging.getLogger(__name__)


def get_repository(
    database_url: Optional[str] = None, config: Optional[AgentDagConfig] = None
) -> ExecutionRepository:
    """Build an execution repository for ``database_url``.

    The URL can be provided explicitly, via environment variable
    ``AGENTDAG_DATABASE_URL`` or ``DATABASE_URL``, or from loaded
    configuration. When no database is configured, an in-memory repository
    is returned.

    Supported schemes: ``file://<dir>`` (a bare ``file://`` uses
    ``.workflow-states`` in the working directory), ``sqlite://<path>``,
    ``postgres://``/``postgresql://`` and async SQLAlchemy URLs with an
    explicit driver such as ``sqlite+aiosqlite://``.
    """

    if database_url is None:
        config = config or load_config()
        database_url = (
            os.getenv(DATABASE_URL_ENV_VAR)
            or os.getenv("DATABASE_URL")
            or config.database_url
        )

    if not database_url:
        return InMemoryExecutionRepository()

    scheme = database_url.split("://", 1)[0]
    logger.debug(f"Selecting execution repository for scheme {scheme}")

    if "+" in scheme:
        from ..db import SQLModelExecutionRepository

        return SQLModelExecutionRepository(database_url)
    if scheme == "file":
        state_dir = database_url.replace("file://", "", 1) or DEFAULT_STATE_DIR
        return FileExecutionRepository(state_dir)
    if scheme == "sqlite":
        return SQLiteExecutionRepository(database_url.replace("sqlite://", "", 1))
    if scheme in ("postgres", "postgresql"):
        if PostgresExecutionRepository is None:
            raise RuntimeError("Postgres support not available")
        return PostgresExecutionRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ExecutionRepository",
    "FileExecutionRepository",
    "InMemoryExecutionRepository",
    "PostgresExecutionRepository",
    "SQLiteExecutionRepository",
    "get_repository",
]
