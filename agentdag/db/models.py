from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class ExecutionRecord(SQLModel, table=True):
    """Row holding one execution document plus queryable columns."""

    __tablename__ = "agentdag_executions"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(index=True)
    status: str = Field(index=True)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    document: dict = Field(sa_column=Column(JSON, nullable=False))
