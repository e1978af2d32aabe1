"""Load workflow definitions from YAML or JSON files."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from .config import EngineDefaults
from .contracts import Workflow
from .errors import WorkflowValidationError

_CONFIG_DEFAULT_KEYS = {
    "max_concurrent": "maxConcurrent",
    "fail_fast": "failFast",
    "save_state": "saveState",
}


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def workflow_from_mapping(
    data: Mapping[str, Any], defaults: Optional[EngineDefaults] = None
) -> Workflow:
    """Build a :class:`Workflow` from a parsed definition.

    A missing ``id`` is derived from ``name``; config keys the definition does
    not set are taken from ``defaults``.
    """

    if not isinstance(data, Mapping):
        raise WorkflowValidationError(["Workflow definition must be a mapping"])

    data = dict(data)
    if not data.get("id") and data.get("name"):
        data["id"] = slugify(str(data["name"]))

    if defaults is not None:
        config = dict(data.get("config") or {})
        for key, alias in _CONFIG_DEFAULT_KEYS.items():
            if key not in config and alias not in config:
                config[key] = getattr(defaults, key)
        data["config"] = config

    try:
        return Workflow.model_validate(data)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or 'workflow'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise WorkflowValidationError(errors, data.get("id")) from exc


def load_workflow_file(
    path: str | Path, defaults: Optional[EngineDefaults] = None
) -> Workflow:
    """Parse a ``.json``, ``.yaml`` or ``.yml`` workflow definition."""

    path = Path(path)
    content = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise WorkflowValidationError([f"Cannot parse {path.name}: {exc}"]) from exc
    return workflow_from_mapping(data or {}, defaults)
