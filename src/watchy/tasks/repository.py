"""Persistent record store for supervised tasks."""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from watchy.storage.alembic_runner import upgrade_head
from watchy.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from watchy.storage.sqlmodel_models import TaskRow
from watchy.tasks.errors import PersistenceFailure
from watchy.tasks.models import TERMINAL_STATUSES, TaskStatus, TaskView


class TaskRepository:
    """Task table facade backed by SQLModel + SQLite.

    Watchers and explicit stops write from different threads, so every write
    goes through one lock. Status transitions out of ``running`` are
    conditional updates: the first writer wins and later writers see
    ``False``.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._write_lock = threading.Lock()

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_task(self, *, name: str, command: str, pid: int, log_path: str) -> TaskView:
        """Insert a running task record."""

        now = to_db_datetime(utc_now())
        try:
            with self._write_lock, Session(self.engine) as session:
                row = TaskRow(
                    name=name,
                    command=command,
                    pid=pid,
                    status=TaskStatus.RUNNING.value,
                    start_time=now,
                    end_time=None,
                    log_path=log_path,
                    created_at=now,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_task_view(row)
        except SQLAlchemyError as error:
            raise PersistenceFailure(f"failed to save task: {error}") from error

    def get_task(self, task_id: int) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(TaskRow, task_id)
            if row is None:
                return None
            return _to_task_view(row)

    def list_tasks(self) -> list[TaskView]:
        """All tasks, newest first."""

        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(TaskRow).order_by(
                        col(TaskRow.created_at).desc(),
                        col(TaskRow.id).desc(),
                    ),
                ).all()
        except SQLAlchemyError as error:
            raise PersistenceFailure(f"failed to list tasks: {error}") from error
        return [_to_task_view(row) for row in rows]

    def list_running_tasks(self) -> list[TaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.status == TaskStatus.RUNNING.value)
                .order_by(col(TaskRow.id).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_tasks_ended_before(self, cutoff: datetime) -> list[TaskView]:
        """Finished tasks whose end time is older than ``cutoff``."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(
                    col(TaskRow.end_time).is_not(None),
                    col(TaskRow.end_time) < to_db_datetime(cutoff),
                )
                .order_by(col(TaskRow.created_at).desc(), col(TaskRow.id).desc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def finish_task(self, task_id: int, status: TaskStatus) -> bool:
        """Move a running task to a terminal status and stamp its end time.

        Returns ``False`` when the task is missing or already finished.
        """

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Unsupported terminal status: {status}")

        now = to_db_datetime(utc_now())
        try:
            with self._write_lock, Session(self.engine) as session:
                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.id) == task_id,
                        col(TaskRow.status) == TaskStatus.RUNNING.value,
                    )
                    .values(status=status.value, end_time=now),
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
                session.commit()
                return True
        except SQLAlchemyError as error:
            raise PersistenceFailure(f"failed to update task status: {error}") from error

    def delete_task(self, task_id: int) -> bool:
        """Delete a finished task record; running tasks are never deleted."""

        try:
            with self._write_lock, Session(self.engine) as session:
                result = session.exec(
                    sa_delete(TaskRow).where(
                        col(TaskRow.id) == task_id,
                        col(TaskRow.status) != TaskStatus.RUNNING.value,
                    ),
                )
                session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as error:
            raise PersistenceFailure(f"failed to delete task: {error}") from error


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        id=row.id or 0,
        name=row.name,
        command=row.command,
        pid=row.pid,
        status=TaskStatus(row.status),
        start_time=to_utc_aware_datetime(row.start_time),
        end_time=to_utc_aware_datetime(row.end_time) if row.end_time is not None else None,
        log_path=row.log_path,
        created_at=to_utc_aware_datetime(row.created_at),
    )
