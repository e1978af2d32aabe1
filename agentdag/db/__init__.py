from .models import ExecutionRecord
from .workflow_db import SQLModelExecutionRepository

__all__ = [
    "ExecutionRecord",
    "SQLModelExecutionRepository",
]
