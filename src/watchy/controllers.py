"""Controllers for watchy CLI commands."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from watchy.agent.cancellation import CancelToken
from watchy.agent.client import OllamaChatClient
from watchy.agent.conversation import Agent, Conversation
from watchy.agent.errors import AgentError, Cancelled
from watchy.agent.events import EventRelay
from watchy.agent.messages import ToolResultEvent, ToolStartEvent
from watchy.agent.tools import ToolExecutor
from watchy.config import Settings
from watchy.ollama_server import ManagedOllamaServer, OllamaServerError
from watchy.tasks.manager import TaskManager
from watchy.tasks.models import TaskView
from watchy.tasks.repository import TaskRepository
from watchy.ticks import TickStore

logger = logging.getLogger(__name__)

LIST_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_TASK_NAME_CHARS = 40
_EVENT_POLL_SECONDS = 0.1
_RESULT_PREVIEW_CHARS = 200


@dataclass(slots=True)
class GlobalOptions:
    """Options shared by every command."""

    home: Path | None = None
    online: bool = False
    model: str | None = None


@dataclass(slots=True)
class StartCommand:
    command: str
    name: str | None = None


@dataclass(slots=True)
class LogsCommand:
    task_id: int
    lines: int = 50


@dataclass(slots=True)
class AskCommand:
    task_id: int
    question: str


@dataclass(slots=True)
class CleanupCommand:
    """``days`` overrides the configured retention when set."""

    days: int | None = None


@dataclass(slots=True)
class TickSaveCommand:
    name: str
    command: str
    description: str = ""


@dataclass(slots=True)
class Runtime:
    """Opened settings, store and manager for one CLI invocation."""

    settings: Settings
    manager: TaskManager
    synced: int = 0
    warnings: list[str] = field(default_factory=list)


class WatchyCliController:
    """Coordinates task, agent and tick CLI operations."""

    def __init__(self, options: GlobalOptions | None = None) -> None:
        self.options = options or GlobalOptions()

    def start(self, command: StartCommand) -> list[str]:
        name = command.name or _default_task_name(command.command)
        with self._runtime() as runtime:
            task_id = runtime.manager.start_task(name, command.command)
        return [f"Started task {task_id}: {name}"]

    def stop(self, task_id: int) -> list[str]:
        with self._runtime() as runtime:
            runtime.manager.stop_task(task_id)
        return [f"Stopped task {task_id}"]

    def restart(self, task_id: int) -> list[str]:
        with self._runtime() as runtime:
            new_id = runtime.manager.restart_task(task_id)
            task = runtime.manager.get_task(new_id)
        return [f"Restarted task {task_id} as task {new_id}: {task.name}"]

    def list_tasks(self) -> list[str]:
        with self._runtime() as runtime:
            tasks = runtime.manager.list_tasks()
        return render_task_list(tasks)

    def info(self, task_id: int) -> list[str]:
        with self._runtime() as runtime:
            task = runtime.manager.get_task(task_id)
        lines = [
            f"ID:       {task.id}",
            f"Name:     {task.name}",
            f"Command:  {task.command}",
            f"Status:   {task.status.value}",
            f"PID:      {task.pid}",
            f"Started:  {_format_time(task.start_time)}",
        ]
        if task.end_time is not None:
            lines.append(f"Ended:    {_format_time(task.end_time)}")
        lines.append(f"Log:      {task.log_path}")
        return lines

    def logs(self, command: LogsCommand) -> list[str]:
        with self._runtime() as runtime:
            return runtime.manager.tail_logs(command.task_id, command.lines)

    def cleanup(self, command: CleanupCommand) -> list[str]:
        with self._runtime() as runtime:
            days = (
                command.days
                if command.days is not None
                else runtime.settings.tasks.retention_days
            )
            removed = runtime.manager.cleanup(days)
        return [f"Cleaned up {removed} old task(s)"]

    def ask(self, command: AskCommand) -> list[str]:
        with self._runtime() as runtime, self._agent(runtime) as agent:
            answer = agent.ask(command.task_id, command.question)
        return [*runtime.warnings, answer]

    def chat(
        self,
        *,
        read_line: Callable[[], str],
        write_line: Callable[[str], None],
    ) -> None:
        """Interactive session until EOF or ``/exit``."""

        with self._runtime() as runtime, self._agent(runtime) as agent:
            for warning in runtime.warnings:
                write_line(warning)
            session = ChatSession(agent.new_conversation(), write_line=write_line)
            write_line(f"watchy chat ({agent.model}). Type /help for commands, /exit to quit.")
            while True:
                try:
                    text = read_line()
                except EOFError:
                    return
                if not session.handle(text):
                    return

    def tick_save(self, command: TickSaveCommand) -> list[str]:
        store = self._ticks()
        store.save(command.name, command.command, command.description)
        return [f'Saved tick "{command.name}": {command.command}']

    def tick_list(self) -> list[str]:
        ticks = self._ticks().list()
        if not ticks:
            return ["No ticks saved", "Save one with: watchy tick save <name> <command>"]
        lines = [f"{'NAME':<15} COMMAND", "-" * 60]
        lines.extend(f"{tick.name:<15} {tick.command}" for tick in ticks)
        return lines

    def tick_remove(self, name: str) -> list[str]:
        self._ticks().remove(name)
        return [f'Removed tick "{name}"']

    def tick_run(self, name: str) -> list[str]:
        tick = self._ticks().get(name)
        with self._runtime() as runtime:
            task_id = runtime.manager.start_task(name, tick.command)
        return [
            f'Started tick "{name}" as task {task_id}: {tick.command}',
            f"View logs: watchy logs {task_id}",
        ]

    def _settings(self) -> Settings:
        settings = Settings.from_env(home_dir=self.options.home)
        if self.options.model:
            settings.agent.model = self.options.model
        if self.options.online:
            settings.use_online()
        settings.validate()
        return settings

    def _ticks(self) -> TickStore:
        return TickStore(self._settings().ticks_path)

    @contextmanager
    def _runtime(self) -> Iterator[Runtime]:
        settings = self._settings()
        repository = TaskRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
        try:
            manager = TaskManager(repository, settings.logs_dir, shell=settings.tasks.shell)
            synced = manager.sync_task_status()
            yield Runtime(settings=settings, manager=manager, synced=synced)
        finally:
            repository.close()

    @contextmanager
    def _agent(self, runtime: Runtime) -> Iterator[Agent]:
        agent_settings = runtime.settings.agent
        server: ManagedOllamaServer | None = None
        host = agent_settings.ollama_host
        if agent_settings.managed_server and not agent_settings.online:
            server = ManagedOllamaServer(agent_settings.managed_server_port)
            try:
                server.start()
                server.wait_ready()
            except OllamaServerError as error:
                logger.warning("Managed Ollama unavailable: %s", error)
                runtime.warnings.append(f"Warning: managed Ollama not available: {error}")
                server.stop()
                server = None
            else:
                host = server.host

        client = OllamaChatClient(
            host=host,
            api_key=agent_settings.api_key,
            timeout_seconds=agent_settings.request_timeout_seconds,
        )
        try:
            yield Agent(
                runtime.manager,
                client,
                model=agent_settings.model,
                executor=ToolExecutor(
                    runtime.manager,
                    shell=runtime.settings.tasks.shell,
                    command_timeout_seconds=runtime.settings.tasks.bash_tool_timeout_seconds,
                ),
                turn_timeout_seconds=agent_settings.turn_timeout_seconds,
                ask_timeout_seconds=agent_settings.ask_timeout_seconds,
            )
        finally:
            client.close()
            if server is not None:
                server.stop()


class ChatSession:
    """One interactive conversation; each turn runs on a worker thread.

    The calling thread renders tool events as they arrive and cancels the
    turn on Ctrl+C.
    """

    def __init__(self, conversation: Conversation, *, write_line: Callable[[str], None]) -> None:
        self.conversation = conversation
        self.write_line = write_line

    def handle(self, text: str) -> bool:
        """Process one input line; ``False`` ends the session."""

        text = text.strip()
        if not text:
            return True
        if text.startswith("/"):
            return self._slash_command(text)

        self.conversation.refresh_system_prompt()
        answer = self.run_turn(text)
        if answer is not None:
            self.write_line(answer)
        return True

    def run_turn(self, text: str) -> str | None:
        agent = self.conversation.agent
        cancel = CancelToken.with_timeout(agent.turn_timeout_seconds)
        relay = EventRelay()
        outcome: dict[str, object] = {}

        def _turn() -> None:
            try:
                outcome["answer"] = self.conversation.send_with_events(
                    cancel,
                    text,
                    on_tool_start=relay.on_tool_start,
                    on_tool_result=relay.on_tool_result,
                )
            except (AgentError, OSError) as error:
                outcome["error"] = error

        worker = threading.Thread(target=_turn, name="watchy-chat-turn", daemon=True)
        worker.start()
        try:
            while worker.is_alive():
                event = relay.get(timeout=_EVENT_POLL_SECONDS)
                if event is not None:
                    self._render_event(event)
        except KeyboardInterrupt:
            cancel.cancel()
            self.write_line("Cancelled.")
            return None
        for event in relay.drain():
            self._render_event(event)

        error = outcome.get("error")
        if isinstance(error, Cancelled):
            self.write_line("Cancelled.")
            return None
        if error is not None:
            self.write_line(f"Error: {error}")
            return None
        return str(outcome.get("answer", ""))

    def _render_event(self, event: ToolStartEvent | ToolResultEvent) -> None:
        if isinstance(event, ToolStartEvent):
            self.write_line(f"> {event.tool} {event.args}")
            return
        preview = event.result.strip().replace("\n", " ")
        if len(preview) > _RESULT_PREVIEW_CHARS:
            preview = preview[:_RESULT_PREVIEW_CHARS] + "..."
        self.write_line(f"< {event.tool}: {preview}")

    def _slash_command(self, text: str) -> bool:
        name, _, argument = text.partition(" ")
        agent = self.conversation.agent
        if name in {"/exit", "/quit"}:
            return False
        if name == "/model":
            if argument.strip():
                agent.set_model(argument.strip())
            self.write_line(f"Model: {agent.model}")
        elif name == "/tasks":
            for line in render_task_list(agent.manager.list_tasks()):
                self.write_line(line)
        elif name == "/help":
            self.write_line("/tasks  list tasks")
            self.write_line("/model [NAME]  show or switch the model")
            self.write_line("/exit  leave the chat")
        else:
            self.write_line(f"Unknown command: {name}")
        return True


def render_task_list(tasks: list[TaskView]) -> list[str]:
    if not tasks:
        return ["No tasks"]
    lines = [f"{'ID':<4} {'STATUS':<10} {'NAME':<30} {'PID':<8} STARTED", "-" * 80]
    lines.extend(
        f"{task.id:<4} {task.status.value:<10} {_truncate(task.name, 30):<30} "
        f"{task.pid:<8} {_format_time(task.start_time)}"
        for task in tasks
    )
    return lines


def _default_task_name(command: str) -> str:
    if len(command) > DEFAULT_TASK_NAME_CHARS:
        return command[:DEFAULT_TASK_NAME_CHARS] + "..."
    return command


def _truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    return value[: width - 3] + "..."


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime(LIST_TIME_FORMAT)
