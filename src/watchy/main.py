"""CLI entrypoint for watchy."""

import logging
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

import rich_click as click

from watchy import __version__
from watchy.agent.errors import AgentError
from watchy.controllers import (
    AskCommand,
    CleanupCommand,
    GlobalOptions,
    LogsCommand,
    StartCommand,
    TickSaveCommand,
    WatchyCliController,
)
from watchy.tasks.errors import TaskError

click.rich_click.USE_MARKDOWN = True
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"


def _handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (TaskError, AgentError, ValueError) as error:
            raise click.ClickException(str(error)) from error

    return wrapper


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="watchy")
@click.option("--online", is_flag=True, default=False, help="Use the hosted Ollama API.")
@click.option("--model", default=None, help="Model name, overrides the config file.")
@click.option(
    "--home",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Data directory (default: $WATCHY_HOME or ~/.watchy).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    envvar="WATCHY_LOG_LEVEL",
    help="Logging verbosity.",
)
@click.pass_context
def watchy(
    ctx: click.Context,
    online: bool,
    model: str | None,
    home: Path | None,
    log_level: str,
) -> None:
    """Supervise background shell commands and ask an agent about them.

    Without a subcommand an interactive chat session starts.
    """

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    ctx.obj = WatchyCliController(GlobalOptions(home=home, online=online, model=model))
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@watchy.command("start", context_settings={"ignore_unknown_options": True})
@click.option("--name", default=None, help="Display name (default: the command, truncated).")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
@_handle_errors
def start(controller: WatchyCliController, name: str | None, command: tuple[str, ...]) -> None:
    """Run COMMAND in the background, logging its output."""

    _emit_lines(controller.start(StartCommand(command=" ".join(command), name=name)))


@watchy.command("stop")
@click.argument("task_id", type=int)
@click.pass_obj
@_handle_errors
def stop(controller: WatchyCliController, task_id: int) -> None:
    """Stop a running task and its whole process group."""

    _emit_lines(controller.stop(task_id))


@watchy.command("restart")
@click.argument("task_id", type=int)
@click.pass_obj
@_handle_errors
def restart(controller: WatchyCliController, task_id: int) -> None:
    """Start a new task with the same name and command."""

    _emit_lines(controller.restart(task_id))


@watchy.command("list")
@click.pass_obj
@_handle_errors
def list_tasks(controller: WatchyCliController) -> None:
    """List all tasks, newest first."""

    _emit_lines(controller.list_tasks())


@watchy.command("info")
@click.argument("task_id", type=int)
@click.pass_obj
@_handle_errors
def info(controller: WatchyCliController, task_id: int) -> None:
    """Show task metadata."""

    _emit_lines(controller.info(task_id))


@watchy.command("logs")
@click.argument("task_id", type=int)
@click.option(
    "-n",
    "--lines",
    type=click.IntRange(min=0),
    default=50,
    show_default=True,
    help="How many trailing lines to print.",
)
@click.pass_obj
@_handle_errors
def logs(controller: WatchyCliController, task_id: int, lines: int) -> None:
    """Print the last lines of a task's log."""

    _emit_lines(controller.logs(LogsCommand(task_id=task_id, lines=lines)))


@watchy.command("ask")
@click.argument("task_id", type=int)
@click.argument("question", nargs=-1, required=True)
@click.pass_obj
@_handle_errors
def ask(controller: WatchyCliController, task_id: int, question: tuple[str, ...]) -> None:
    """Ask the agent a question about one task."""

    click.echo("Asking agent...")
    _emit_lines(controller.ask(AskCommand(task_id=task_id, question=" ".join(question))))


@watchy.command("chat")
@click.pass_obj
@_handle_errors
def chat(controller: WatchyCliController) -> None:
    """Interactive agent session. Ctrl+C cancels the running turn."""

    controller.chat(read_line=_read_prompt, write_line=click.echo)


@watchy.command("cleanup")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Retention in days (default: retention_days from config.yaml).",
)
@click.pass_obj
@_handle_errors
def cleanup(controller: WatchyCliController, days: int | None) -> None:
    """Delete finished tasks and their logs older than the retention window."""

    _emit_lines(controller.cleanup(CleanupCommand(days=days)))


@watchy.group("tick")
def tick() -> None:
    """Saved command shortcuts."""


@tick.command("save", context_settings={"ignore_unknown_options": True})
@click.option("--description", default="", help="Optional description.")
@click.argument("name")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
@_handle_errors
def tick_save(
    controller: WatchyCliController,
    description: str,
    name: str,
    command: tuple[str, ...],
) -> None:
    """Save COMMAND under NAME."""

    _emit_lines(
        controller.tick_save(
            TickSaveCommand(name=name, command=" ".join(command), description=description),
        ),
    )


@tick.command("list")
@click.pass_obj
@_handle_errors
def tick_list(controller: WatchyCliController) -> None:
    """List saved ticks."""

    _emit_lines(controller.tick_list())


@tick.command("rm")
@click.argument("name")
@click.pass_obj
@_handle_errors
def tick_rm(controller: WatchyCliController, name: str) -> None:
    """Remove a saved tick."""

    _emit_lines(controller.tick_remove(name))


@tick.command("run")
@click.argument("name")
@click.pass_obj
@_handle_errors
def tick_run(controller: WatchyCliController, name: str) -> None:
    """Start a saved tick as a background task."""

    _emit_lines(controller.tick_run(name))


def _read_prompt() -> str:
    try:
        return click.prompt("", prompt_suffix="> ", default="", show_default=False)
    except click.Abort as error:
        raise EOFError from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    watchy()
