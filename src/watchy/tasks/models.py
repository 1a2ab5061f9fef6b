"""Domain models for supervised background tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    RUNNING = "running"
    STOPPED = "stopped"
    CRASHED = "crashed"


TERMINAL_STATUSES = frozenset({TaskStatus.STOPPED, TaskStatus.CRASHED})


@dataclass(slots=True)
class TaskView:
    """Readable task snapshot for the CLI, the manager and agent tools."""

    id: int
    name: str
    command: str
    pid: int
    status: TaskStatus
    start_time: datetime
    end_time: datetime | None
    log_path: str
    created_at: datetime

    @property
    def is_running(self) -> bool:
        return self.status == TaskStatus.RUNNING
