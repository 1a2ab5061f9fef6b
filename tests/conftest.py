"""Shared test fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from watchy.agent.messages import Message, ToolCall
from watchy.tasks.manager import TaskManager
from watchy.tasks.models import TaskStatus, TaskView
from watchy.tasks.repository import TaskRepository

_ENV_VARS = (
    "WATCHY_HOME",
    "WATCHY_MODEL",
    "WATCHY_RETENTION_DAYS",
    "WATCHY_SHELL",
    "WATCHY_BASH_TOOL_TIMEOUT_SECONDS",
    "WATCHY_TURN_TIMEOUT_SECONDS",
    "WATCHY_ASK_TIMEOUT_SECONDS",
    "WATCHY_REQUEST_TIMEOUT_SECONDS",
    "WATCHY_MANAGED_OLLAMA",
    "WATCHY_OLLAMA_PORT",
    "WATCHY_SQLITE_BUSY_TIMEOUT_MS",
    "WATCHY_LOG_LEVEL",
    "OLLAMA_HOST",
    "OLLAMA_API_KEY",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(tmp_path / "watchy.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def manager(repository: TaskRepository, tmp_path: Path) -> Iterator[TaskManager]:
    task_manager = TaskManager(repository, tmp_path / "logs", shell="bash")
    yield task_manager
    for task in repository.list_running_tasks():
        try:
            task_manager.stop_task(task.id)
        except Exception:  # noqa: BLE001
            pass
        task_manager.wait(task.id, timeout=5)


def wait_for_status(
    manager: TaskManager,
    task_id: int,
    status: TaskStatus,
    timeout: float = 5.0,
) -> TaskView:
    """Poll until the task reaches ``status`` or fail the test."""

    deadline = time.monotonic() + timeout
    while True:
        task = manager.get_task(task_id)
        if task.status == status:
            return task
        if time.monotonic() >= deadline:
            pytest.fail(f"task {task_id} stayed {task.status.value}, expected {status.value}")
        time.sleep(0.05)


class ScriptedChatClient:
    """ChatClient returning canned replies and recording every request."""

    def __init__(self, replies: list[Message] | None = None) -> None:
        self.replies = list(replies or [])
        self.requests: list[list[Message]] = []
        self.before_reply: Callable[[], None] | None = None

    def chat(self, *, model, messages, tools, timeout=None) -> Message:
        self.requests.append(list(messages))
        if self.before_reply is not None:
            self.before_reply()
        if not self.replies:
            raise AssertionError("unexpected chat request")
        return self.replies.pop(0)


def tool_reply(name: str, **arguments) -> Message:
    return Message(role="assistant", tool_calls=[ToolCall(name=name, arguments=arguments)])


def text_reply(content: str) -> Message:
    return Message(role="assistant", content=content)
