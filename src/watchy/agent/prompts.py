"""System prompt rendering from the live task table and host facts."""

from __future__ import annotations

import os
import platform
import socket
from collections.abc import Sequence
from dataclasses import dataclass

from watchy.tasks.models import TaskView

FALLBACK_SYSTEM_PROMPT = (
    "You are a helpful assistant analyzing logs for background tasks. "
    "(Failed to load task list.)"
)

OPERATOR_PROMPT = """You are a helpful assistant managing and analyzing background tasks.
You have access to tools to read files, execute bash commands, get task info, start tasks, \
and stop tasks.

Environment:
  hostname: {hostname}
  os: {os_name}
  cwd: {cwd}
  shell: {shell}

All tasks:
{tasks}
You are an operator. When the user asks you to do something, don't just answer -- do it.

Approach:
1. Figure out what's needed: read files, check running processes, inspect logs, \
look at the environment.
2. Do the work: start services, run setup scripts, install dependencies, configure things.
3. Verify it worked: check health endpoints, read logs for errors, confirm processes are running.
4. If something fails: read the logs, diagnose the issue, fix it, and retry. \
Keep going until it works or you've exhausted your options.

Don't ask the user what to do -- investigate and act. Use bash_command to explore the system, \
read_file to check configs and logs, start_task to run things in the background, \
and stop_task to kill broken processes.

Be concise. Show what you did and what happened, not what you could do."""

FOCUSED_PROMPT = """You are a helpful assistant analyzing logs for background tasks.
You have access to tools to read files, execute bash commands, and get task information.

All tasks:
{tasks}
The user is asking about task {task_id} ({task_name}), but you can reference any task above.

When the user asks questions, use your tools to investigate the logs and provide accurate answers.
You can use the read_file tool to read log files directly, or bash_command to run grep/tail/etc.

Be concise and helpful in your responses."""


@dataclass(frozen=True, slots=True)
class EnvironmentFacts:
    hostname: str
    os_name: str
    cwd: str
    shell: str

    @classmethod
    def collect(cls) -> EnvironmentFacts:
        try:
            cwd = os.getcwd()
        except OSError:
            cwd = ""
        return cls(
            hostname=socket.gethostname(),
            os_name=f"{platform.system().lower()}/{platform.machine()}",
            cwd=cwd,
            shell=os.getenv("SHELL", ""),
        )


def render_task_table(tasks: Sequence[TaskView], focused_id: int | None = None) -> str:
    lines = []
    for task in tasks:
        marker = " <-- FOCUSED" if focused_id is not None and task.id == focused_id else ""
        lines.append(
            f"  - [{task.id}] {task.name} | cmd: {task.command} | status: {task.status.value}"
            f" | pid: {task.pid} | log: {task.log_path}{marker}\n",
        )
    return "".join(lines)


def operator_prompt(tasks: Sequence[TaskView], facts: EnvironmentFacts) -> str:
    return OPERATOR_PROMPT.format(
        hostname=facts.hostname,
        os_name=facts.os_name,
        cwd=facts.cwd,
        shell=facts.shell,
        tasks=render_task_table(tasks),
    )


def focused_prompt(tasks: Sequence[TaskView], focused: TaskView) -> str:
    return FOCUSED_PROMPT.format(
        tasks=render_task_table(tasks, focused_id=focused.id),
        task_id=focused.id,
        task_name=focused.name,
    )
