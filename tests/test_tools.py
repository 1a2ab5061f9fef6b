from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from watchy.agent.errors import CommandNotAllowed, InvalidArgument, MissingArgument, UnknownTool
from watchy.agent.messages import ToolCall
from watchy.agent.tools import MAX_TOOL_OUTPUT_BYTES, TOOL_SCHEMAS, ToolExecutor
from watchy.tasks.errors import TaskError
from watchy.tasks.manager import TaskManager
from watchy.tasks.models import TaskStatus

pytestmark = [
    allure.epic("Agent"),
    allure.feature("Tool Executor"),
]


@pytest.fixture()
def executor(manager: TaskManager) -> ToolExecutor:
    return ToolExecutor(manager, command_timeout_seconds=5)


def _call(executor: ToolExecutor, name: str, /, **arguments) -> str:
    return executor.execute(ToolCall(name=name, arguments=arguments))


def test_schema_declares_every_handler(executor: ToolExecutor) -> None:
    declared = [schema["function"]["name"] for schema in TOOL_SCHEMAS]

    assert declared == executor.tool_names
    for schema in TOOL_SCHEMAS:
        assert schema["type"] == "function"
        assert schema["function"]["parameters"]["required"]


def test_unknown_tool(executor: ToolExecutor) -> None:
    with pytest.raises(UnknownTool, match="unknown tool: rm_rf"):
        _call(executor, "rm_rf")


def test_read_file_small(executor: ToolExecutor, tmp_path: Path) -> None:
    path = tmp_path / "small.log"
    path.write_text("line one\nline two\n")

    assert _call(executor, "read_file", path=str(path)) == "line one\nline two\n"


def test_read_file_keeps_last_10kb(executor: ToolExecutor, tmp_path: Path) -> None:
    path = tmp_path / "big.log"
    path.write_bytes(b"a" * 100 + b"b" * MAX_TOOL_OUTPUT_BYTES)

    result = _call(executor, "read_file", path=str(path))

    assert result == "[... truncated to last 10KB ...]\n" + "b" * MAX_TOOL_OUTPUT_BYTES


def test_read_file_missing(executor: ToolExecutor, tmp_path: Path) -> None:
    with pytest.raises(InvalidArgument, match="failed to read file"):
        _call(executor, "read_file", path=str(tmp_path / "absent.log"))


def test_read_file_requires_path(executor: ToolExecutor) -> None:
    with pytest.raises(MissingArgument, match="missing 'path' argument"):
        _call(executor, "read_file")


def test_bash_command_runs_whitelisted_pipeline(executor: ToolExecutor, tmp_path: Path) -> None:
    path = tmp_path / "app.log"
    path.write_text("INFO ok\nERROR boom\nERROR again\n")

    result = _call(executor, "bash_command", command=f"grep ERROR {path} | wc -l")

    assert result.strip() == "2"


def test_bash_command_rejects_non_whitelisted(executor: ToolExecutor) -> None:
    with pytest.raises(CommandNotAllowed, match="command 'rm' is not allowed"):
        _call(executor, "bash_command", command="rm -rf /tmp/whatever")


def test_bash_command_rejects_empty(executor: ToolExecutor) -> None:
    with pytest.raises(InvalidArgument, match="empty command"):
        _call(executor, "bash_command", command="   ")


def test_bash_command_failure_is_a_result(executor: ToolExecutor, tmp_path: Path) -> None:
    result = _call(executor, "bash_command", command=f"cat {tmp_path / 'missing'}")

    assert result.startswith("Command failed: exit status 1\nOutput: ")
    assert "No such file" in result


def test_bash_command_timeout_is_a_result(manager: TaskManager) -> None:
    executor = ToolExecutor(manager, command_timeout_seconds=0.5)

    result = _call(executor, "bash_command", command="tail -f /dev/null")

    assert result.startswith("Command failed: timed out after 0.5s")


def test_bash_command_output_is_truncated(executor: ToolExecutor, tmp_path: Path) -> None:
    path = tmp_path / "big.txt"
    path.write_bytes(b"x" * (MAX_TOOL_OUTPUT_BYTES + 50))

    result = _call(executor, "bash_command", command=f"cat {path}")

    assert result == "x" * MAX_TOOL_OUTPUT_BYTES + "\n[... truncated ...]"


def test_start_task_defaults_name_to_truncated_command(
    executor: ToolExecutor,
    manager: TaskManager,
) -> None:
    command = "echo " + "a" * 60

    result = _call(executor, "start_task", command=command)

    task = manager.list_tasks()[0]
    assert task.name == command[:40] + "..."
    assert result == f"Started task {task.id}: {task.name}"


def test_start_task_with_name(executor: ToolExecutor, manager: TaskManager) -> None:
    result = _call(executor, "start_task", command="sleep 30", name="sleeper")

    task = manager.list_tasks()[0]
    assert result == f"Started task {task.id}: sleeper"
    assert task.status == TaskStatus.RUNNING


def test_start_task_empty_command_fails(executor: ToolExecutor) -> None:
    with pytest.raises(TaskError, match="failed to start task: empty command"):
        _call(executor, "start_task", command="")


def test_stop_task(executor: ToolExecutor, manager: TaskManager) -> None:
    task_id = manager.start_task("sleeper", "sleep 30")

    assert _call(executor, "stop_task", task_id=task_id) == f"Stopped task {task_id}"
    assert manager.get_task(task_id).status == TaskStatus.STOPPED


def test_stop_task_requires_task_id(executor: ToolExecutor) -> None:
    with pytest.raises(MissingArgument, match="missing 'task_id' argument"):
        _call(executor, "stop_task")


@pytest.mark.parametrize("raw_id", [1.0, "1"])
def test_task_id_accepts_numeric_forms(
    executor: ToolExecutor,
    manager: TaskManager,
    raw_id,
) -> None:
    task_id = manager.start_task("quick", "true")
    assert task_id == 1

    info = json.loads(_call(executor, "get_task_info", task_id=raw_id))

    assert info["id"] == 1


@pytest.mark.parametrize("raw_id", [1.5, "one", True, [1]])
def test_task_id_rejects_non_integers(executor: ToolExecutor, raw_id) -> None:
    with pytest.raises(InvalidArgument, match="must be an integer"):
        _call(executor, "get_task_info", task_id=raw_id)


def test_get_task_info_snapshot(executor: ToolExecutor, manager: TaskManager) -> None:
    task_id = manager.start_task("echo-test", "echo hello")
    manager.wait(task_id, timeout=5)

    info = json.loads(_call(executor, "get_task_info", task_id=task_id))

    assert set(info) == {
        "id",
        "name",
        "command",
        "pid",
        "status",
        "start_time",
        "end_time",
        "log_path",
    }
    assert info["name"] == "echo-test"
    assert info["status"] == "stopped"


def test_get_task_info_running_task_has_no_end_time(
    executor: ToolExecutor,
    manager: TaskManager,
) -> None:
    task_id = manager.start_task("sleeper", "sleep 30")

    info = json.loads(_call(executor, "get_task_info", task_id=task_id))

    assert "end_time" not in info
    assert info["status"] == "running"
