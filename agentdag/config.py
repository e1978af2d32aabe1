from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    DEFAULT_LARGE_WORKFLOW_THRESHOLD,
    DEFAULT_MAX_CONCURRENT,
)


class EngineDefaults(BaseModel):
    """Defaults applied to workflow definitions that omit their config."""

    max_concurrent: int = Field(default=DEFAULT_MAX_CONCURRENT, ge=1)
    fail_fast: bool = False
    save_state: bool = True
    large_workflow_threshold: int = Field(
        default=DEFAULT_LARGE_WORKFLOW_THRESHOLD, ge=1
    )


class AgentDagConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineDefaults = EngineDefaults()
    database_url: Optional[str] = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"


def load_config(path: Optional[str] = None) -> AgentDagConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to the AGENTDAG_CONFIG
            env variable or 'agentdag.yaml' in the current directory.
    """

    config_path = path or os.getenv(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AgentDagConfig(**data)
    else:
        config = AgentDagConfig()

    env_db_url = os.getenv(DATABASE_URL_ENV_VAR) or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
