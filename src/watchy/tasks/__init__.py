"""Background task supervision: record store, process control, lifecycle manager."""

from watchy.tasks.errors import (
    EmptyCommand,
    KillFailed,
    LogReadError,
    NotRunning,
    PersistenceFailure,
    SpawnFailure,
    TaskError,
    TaskNotFound,
)
from watchy.tasks.manager import TaskManager
from watchy.tasks.models import TaskStatus, TaskView
from watchy.tasks.repository import TaskRepository

__all__ = [
    "EmptyCommand",
    "KillFailed",
    "LogReadError",
    "NotRunning",
    "PersistenceFailure",
    "SpawnFailure",
    "TaskError",
    "TaskManager",
    "TaskNotFound",
    "TaskRepository",
    "TaskStatus",
    "TaskView",
]
