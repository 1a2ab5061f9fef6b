"""Typed failures returned by the task store and lifecycle manager."""

from __future__ import annotations


class TaskError(RuntimeError):
    """Base class for task lifecycle failures."""


class SpawnFailure(TaskError):
    """The process could not be started; nothing was persisted."""


class EmptyCommand(SpawnFailure):
    """A task was requested with an empty command line."""

    def __init__(self) -> None:
        super().__init__("empty command")


class PersistenceFailure(TaskError):
    """The task record could not be saved."""


class TaskNotFound(TaskError):
    """No task record exists for the given id."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"task {task_id} not found")
        self.task_id = task_id


class NotRunning(TaskError):
    """A stop was requested for a task that is not running."""

    def __init__(self, task_id: int, status: str) -> None:
        super().__init__(f"task {task_id} is not running (status: {status})")
        self.task_id = task_id
        self.status = status


class KillFailed(TaskError):
    """Neither SIGTERM nor SIGKILL could be delivered to the process group."""


class LogReadError(TaskError):
    """The task log file is missing or unreadable."""
