"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'stopped', 'crashed')",
            name="ck_tasks_status",
        ),
        CheckConstraint(
            "(status = 'running') = (end_time IS NULL)",
            name="ck_tasks_end_time_matches_status",
        ),
        Index("ix_tasks_status", "status"),
        Index("ix_tasks_end_time", "end_time"),
        Index("ix_tasks_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, primary_key=True)
    name: str
    command: str = Field(sa_column=Column(Text, nullable=False))
    pid: int = Field(default=0)
    status: str
    start_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    end_time: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    log_path: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
