"""Lifecycle manager that spawns, watches, signals and reaps background tasks."""

from __future__ import annotations

import itertools
import logging
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO

from watchy.storage.common import utc_now
from watchy.tasks.errors import (
    EmptyCommand,
    KillFailed,
    LogReadError,
    NotRunning,
    PersistenceFailure,
    SpawnFailure,
    TaskNotFound,
)
from watchy.tasks.models import TaskStatus, TaskView
from watchy.tasks.process import pid_alive, signal_group, spawn_group_leader
from watchy.tasks.repository import TaskRepository

logger = logging.getLogger(__name__)

_COMPENSATING_KILL_WAIT_SECONDS = 2.0


@dataclass(slots=True)
class TaskWatcher:
    """Join handle for the thread that waits on one task's process."""

    task_id: int
    process: subprocess.Popen[bytes]
    thread: threading.Thread | None = None
    final_status: TaskStatus | None = None
    done: threading.Event = field(default_factory=threading.Event)


class TaskManager:
    """Spawns shell commands as process-group leaders and tracks them in the store.

    One watcher thread exists per task spawned by this manager. A watcher only
    writes the terminal status when the record is still ``running``, and it
    reports ``stopped`` whenever a stop was requested for its task, so an
    explicit stop is never overwritten by ``crashed``.
    """

    def __init__(
        self,
        repository: TaskRepository,
        logs_dir: Path,
        *,
        shell: str = "bash",
        cwd: Path | None = None,
    ) -> None:
        self.repository = repository
        self.logs_dir = logs_dir
        self.shell = shell
        self.cwd = cwd
        self._lock = threading.Lock()
        self._watchers: dict[int, TaskWatcher] = {}
        self._stop_requested: set[int] = set()

    def start_task(self, name: str, command: str) -> int:
        """Spawn ``command`` in the background and return the new task id."""

        if not command.strip():
            raise EmptyCommand

        log_path, log_handle = self._create_log_file()
        try:
            process = spawn_group_leader(
                command=command,
                shell=self.shell,
                log_handle=log_handle,
                cwd=self.cwd,
            )
        except OSError as error:
            log_handle.close()
            log_path.unlink(missing_ok=True)
            raise SpawnFailure(f"failed to start process: {error}") from error

        try:
            task = self.repository.create_task(
                name=name,
                command=command,
                pid=process.pid,
                log_path=str(log_path),
            )
        except PersistenceFailure:
            # Compensating kill; a failure here leaks an unrecorded process.
            logger.error("Could not record task %r (pid %d); killing it", name, process.pid)
            self._kill_unrecorded(process)
            raise
        finally:
            log_handle.close()

        watcher = TaskWatcher(task_id=task.id, process=process)
        watcher.thread = threading.Thread(
            target=self._watch,
            args=(watcher,),
            daemon=True,
            name=f"watchy-watcher-{task.id}",
        )
        with self._lock:
            self._watchers[task.id] = watcher
        watcher.thread.start()
        logger.info("Started task %d (%s) pid=%d log=%s", task.id, name, process.pid, log_path)
        return task.id

    def stop_task(self, task_id: int) -> None:
        """Terminate a running task's whole process group and mark it stopped."""

        task = self.get_task(task_id)
        if task.status != TaskStatus.RUNNING:
            raise NotRunning(task_id, task.status.value)

        with self._lock:
            self._stop_requested.add(task_id)
        try:
            signal_group(task.pid, signal.SIGTERM)
        except OSError as term_error:
            logger.warning(
                "SIGTERM to process group %d failed (%s); sending SIGKILL",
                task.pid,
                term_error,
            )
            try:
                signal_group(task.pid, signal.SIGKILL)
            except OSError as kill_error:
                with self._lock:
                    self._stop_requested.discard(task_id)
                raise KillFailed(f"failed to kill process: {kill_error}") from kill_error

        try:
            self.repository.finish_task(task_id, TaskStatus.STOPPED)
        finally:
            with self._lock:
                # Only a watcher consumes the flag; tasks from other invocations have none.
                if task_id not in self._watchers:
                    self._stop_requested.discard(task_id)
        logger.info("Stopped task %d", task_id)

    def restart_task(self, task_id: int) -> int:
        """Start a fresh task with the same name and command; the old record stays."""

        task = self.get_task(task_id)
        if task.status == TaskStatus.RUNNING:
            self.stop_task(task_id)
        return self.start_task(task.name, task.command)

    def list_tasks(self) -> list[TaskView]:
        return self.repository.list_tasks()

    def get_task(self, task_id: int) -> TaskView:
        task = self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def tail_logs(self, task_id: int, lines: int) -> list[str]:
        """Return at most the last ``lines`` lines of the task's log."""

        task = self.get_task(task_id)
        try:
            content = Path(task.log_path).read_bytes()
        except OSError as error:
            raise LogReadError(f"failed to open log file: {error}") from error

        all_lines = content.decode("utf-8", errors="replace").splitlines()
        if lines <= 0:
            return []
        return all_lines[-lines:]

    def check_pid(self, pid: int) -> bool:
        return pid_alive(pid)

    def sync_task_status(self) -> int:
        """Mark ``running`` records whose process no longer exists as crashed.

        Returns how many tasks were transitioned.
        """

        crashed = 0
        for task in self.repository.list_running_tasks():
            if self.check_pid(task.pid):
                continue
            if self.repository.finish_task(task.id, TaskStatus.CRASHED):
                logger.warning("Task %d (pid %d) is gone; marked crashed", task.id, task.pid)
                crashed += 1
        return crashed

    def cleanup(self, retention_days: int) -> int:
        """Delete finished tasks (and their logs) that ended more than N days ago."""

        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")

        cutoff = utc_now() - timedelta(days=retention_days)
        removed = 0
        for task in self.repository.list_tasks_ended_before(cutoff):
            try:
                Path(task.log_path).unlink(missing_ok=True)
            except OSError as error:
                logger.warning("Could not remove log %s: %s", task.log_path, error)
            try:
                deleted = self.repository.delete_task(task.id)
            except PersistenceFailure as error:
                logger.warning("Skipping cleanup of task %d: %s", task.id, error)
                continue
            if deleted:
                removed += 1
                with self._lock:
                    self._watchers.pop(task.id, None)
        return removed

    def wait(self, task_id: int, timeout: float | None = None) -> bool:
        """Join the watcher for ``task_id``; ``False`` on timeout or unknown watcher."""

        with self._lock:
            watcher = self._watchers.get(task_id)
        if watcher is None:
            return False
        return watcher.done.wait(timeout)

    def _watch(self, watcher: TaskWatcher) -> None:
        returncode: int | None
        try:
            returncode = watcher.process.wait()
        except OSError as error:
            logger.warning("Waiting on task %d failed: %s", watcher.task_id, error)
            returncode = None

        with self._lock:
            stop_requested = watcher.task_id in self._stop_requested
            self._stop_requested.discard(watcher.task_id)

        if stop_requested or returncode is None or returncode == 0:
            status = TaskStatus.STOPPED
        else:
            status = TaskStatus.CRASHED

        try:
            written = self.repository.finish_task(watcher.task_id, status)
        except PersistenceFailure:
            logger.exception("Could not record exit of task %d", watcher.task_id)
        else:
            logger.info(
                "Task %d exited (returncode=%s) -> %s%s",
                watcher.task_id,
                returncode,
                status.value,
                "" if written else " (already finished)",
            )
        finally:
            watcher.final_status = status
            watcher.done.set()

    def _create_log_file(self) -> tuple[Path, BinaryIO]:
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise SpawnFailure(f"failed to create log file: {error}") from error

        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        for attempt in itertools.count():
            suffix = f"-{attempt}" if attempt else ""
            path = self.logs_dir / f"task-{stamp}{suffix}.log"
            try:
                return path, path.open("xb")
            except FileExistsError:
                continue
            except OSError as error:
                raise SpawnFailure(f"failed to create log file: {error}") from error

    @staticmethod
    def _kill_unrecorded(process: subprocess.Popen[bytes]) -> None:
        try:
            signal_group(process.pid, signal.SIGTERM)
        except OSError as error:
            logger.error("Compensating kill of pid %d failed: %s", process.pid, error)
            return
        try:
            process.wait(timeout=_COMPENSATING_KILL_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Unrecorded pid %d did not exit after SIGTERM", process.pid)
