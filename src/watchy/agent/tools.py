"""Fixed set of operations the model may call, plus their JSON schema."""

from __future__ import annotations

import contextlib
import json
import logging
import shlex
import signal
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchy.agent.errors import (
    CommandNotAllowed,
    InvalidArgument,
    MissingArgument,
    UnknownTool,
)
from watchy.agent.messages import ToolCall
from watchy.tasks.errors import TaskError
from watchy.tasks.manager import TaskManager
from watchy.tasks.process import signal_group

logger = logging.getLogger(__name__)

MAX_TOOL_OUTPUT_BYTES = 10 * 1024
DEFAULT_TASK_NAME_CHARS = 40
INFO_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

READ_ONLY_COMMANDS = frozenset(
    {
        "grep",
        "tail",
        "head",
        "awk",
        "sed",
        "wc",
        "cat",
        "sort",
        "uniq",
        "cut",
        "ls",
        "find",
        "ps",
        "lsof",
        "netstat",
        "ss",
        "df",
        "du",
        "free",
        "uptime",
        "whoami",
        "hostname",
        "uname",
        "env",
        "printenv",
        "which",
        "file",
        "stat",
        "id",
        "curl",
        "dig",
        "ping",
    },
)


def _function_tool(
    name: str,
    description: str,
    properties: dict[str, dict[str, str]],
    required: list[str],
) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "required": required,
                "properties": properties,
            },
        },
    }


TOOL_SCHEMAS: list[dict[str, Any]] = [
    _function_tool(
        "read_file",
        "Read the contents of a file given its absolute path. "
        "Use this to read log files or any other files on the system.",
        {"path": {"type": "string", "description": "The absolute path to the file to read"}},
        ["path"],
    ),
    _function_tool(
        "bash_command",
        "Execute a read-only bash command. Allowed: "
        + ", ".join(sorted(READ_ONLY_COMMANDS))
        + ". Pipes are supported.",
        {
            "command": {
                "type": "string",
                "description": "The bash command to execute "
                "(e.g., 'grep ERROR /path/to/log', 'tail -n 20 /path/to/log')",
            },
        },
        ["command"],
    ),
    _function_tool(
        "start_task",
        "Start a new background task. "
        "The command will run in the background and its output will be logged.",
        {
            "command": {
                "type": "string",
                "description": "The shell command to run as a background task",
            },
            "name": {
                "type": "string",
                "description": "A short human-readable name for the task "
                "(optional, defaults to the command)",
            },
        },
        ["command"],
    ),
    _function_tool(
        "stop_task",
        "Stop a running background task by its ID",
        {"task_id": {"type": "integer", "description": "The ID of the task to stop"}},
        ["task_id"],
    ),
    _function_tool(
        "get_task_info",
        "Get metadata about a task including its ID, name, command, PID, status, "
        "start time, and log file path",
        {"task_id": {"type": "integer", "description": "The ID of the task"}},
        ["task_id"],
    ),
]


class ToolExecutor:
    """Stateless dispatcher from tool names to handlers.

    Handlers raise ``ToolFailure`` (or ``TaskError`` from the manager) on
    failure; the conversation loop turns those into result text.
    """

    def __init__(
        self,
        manager: TaskManager,
        *,
        shell: str = "bash",
        command_timeout_seconds: float = 30.0,
    ) -> None:
        self.manager = manager
        self.shell = shell
        self.command_timeout_seconds = command_timeout_seconds
        self._handlers: dict[str, Callable[[dict[str, Any]], str]] = {
            "read_file": self._read_file,
            "bash_command": self._bash_command,
            "start_task": self._start_task,
            "stop_task": self._stop_task,
            "get_task_info": self._get_task_info,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def execute(self, call: ToolCall) -> str:
        handler = self._handlers.get(call.name)
        if handler is None:
            raise UnknownTool(call.name)
        return handler(call.arguments)

    def _read_file(self, arguments: dict[str, Any]) -> str:
        path = _require_str(arguments, "path")
        try:
            content = Path(path).read_bytes()
        except OSError as error:
            raise InvalidArgument(f"failed to read file: {error}") from error

        if len(content) > MAX_TOOL_OUTPUT_BYTES:
            tail = content[-MAX_TOOL_OUTPUT_BYTES:].decode("utf-8", errors="replace")
            return f"[... truncated to last 10KB ...]\n{tail}"
        return content.decode("utf-8", errors="replace")

    def _bash_command(self, arguments: dict[str, Any]) -> str:
        command = _require_str(arguments, "command")
        try:
            tokens = shlex.split(command)
        except ValueError as error:
            raise InvalidArgument(f"cannot parse command: {error}") from error
        if not tokens:
            raise InvalidArgument("empty command")
        if tokens[0] not in READ_ONLY_COMMANDS:
            raise CommandNotAllowed(tokens[0])

        try:
            process = subprocess.Popen(  # noqa: S603
                [self.shell, "-c", command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as error:
            return f"Command failed: {error}\nOutput: "

        try:
            raw_output, _ = process.communicate(timeout=self.command_timeout_seconds)
        except subprocess.TimeoutExpired:
            # Kill the whole group so pipeline members do not keep stdout open.
            with contextlib.suppress(OSError):
                signal_group(process.pid, signal.SIGKILL)
            raw_output, _ = process.communicate()
            logger.info(
                "bash_command timed out after %ss: %s",
                self.command_timeout_seconds,
                command,
            )
            return (
                f"Command failed: timed out after {self.command_timeout_seconds:g}s\n"
                f"Output: {_truncate_output(raw_output or b'')}"
            )

        output = _truncate_output(raw_output)
        if process.returncode != 0:
            return f"Command failed: exit status {process.returncode}\nOutput: {output}"
        return output

    def _start_task(self, arguments: dict[str, Any]) -> str:
        command = _require_str(arguments, "command")
        name = arguments.get("name")
        if not isinstance(name, str) or not name.strip():
            name = command
            if len(name) > DEFAULT_TASK_NAME_CHARS:
                name = name[:DEFAULT_TASK_NAME_CHARS] + "..."
        try:
            task_id = self.manager.start_task(name, command)
        except TaskError as error:
            raise TaskError(f"failed to start task: {error}") from error
        return f"Started task {task_id}: {name}"

    def _stop_task(self, arguments: dict[str, Any]) -> str:
        task_id = _require_task_id(arguments)
        try:
            self.manager.stop_task(task_id)
        except TaskError as error:
            raise TaskError(f"failed to stop task: {error}") from error
        return f"Stopped task {task_id}"

    def _get_task_info(self, arguments: dict[str, Any]) -> str:
        task = self.manager.get_task(_require_task_id(arguments))
        info: dict[str, Any] = {
            "id": task.id,
            "name": task.name,
            "command": task.command,
            "pid": task.pid,
            "status": task.status.value,
            "start_time": task.start_time.astimezone().strftime(INFO_TIME_FORMAT),
            "log_path": task.log_path,
        }
        if task.end_time is not None:
            info["end_time"] = task.end_time.astimezone().strftime(INFO_TIME_FORMAT)
        return json.dumps(info, indent=2, ensure_ascii=False)


def _require_str(arguments: dict[str, Any], key: str) -> str:
    if key not in arguments or arguments[key] is None:
        raise MissingArgument(key)
    value = arguments[key]
    if not isinstance(value, str):
        raise InvalidArgument(f"'{key}' must be a string")
    return value


def _require_task_id(arguments: dict[str, Any]) -> int:
    """Accept ints, integral floats and digit strings; models emit all three."""

    if "task_id" not in arguments or arguments["task_id"] is None:
        raise MissingArgument("task_id")
    value = arguments["task_id"]
    if isinstance(value, bool):
        raise InvalidArgument("'task_id' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidArgument("'task_id' must be an integer")


def _truncate_output(output: bytes) -> str:
    if len(output) > MAX_TOOL_OUTPUT_BYTES:
        head = output[:MAX_TOOL_OUTPUT_BYTES].decode("utf-8", errors="replace")
        return f"{head}\n[... truncated ...]"
    return output.decode("utf-8", errors="replace")
