from __future__ import annotations

from datetime import timedelta

import allure
import pytest
from sqlalchemy import update

from watchy.storage.common import to_db_datetime, utc_now
from watchy.storage.sqlmodel_models import TaskRow
from watchy.tasks.models import TaskStatus
from watchy.tasks.repository import TaskRepository

pytestmark = [
    allure.epic("Task Supervision"),
    allure.feature("Task Record Store"),
]


def _create(repository: TaskRepository, name: str = "job", pid: int = 4242):
    return repository.create_task(
        name=name,
        command=f"run {name}",
        pid=pid,
        log_path=f"/tmp/{name}.log",
    )


def _set_end_time(repository: TaskRepository, task_id: int, days_ago: float) -> None:
    with repository.engine.begin() as connection:
        connection.execute(
            update(TaskRow)
            .where(TaskRow.id == task_id)
            .values(end_time=to_db_datetime(utc_now() - timedelta(days=days_ago))),
        )


def test_create_task_is_running_without_end_time(repository: TaskRepository) -> None:
    task = _create(repository)

    assert task.id > 0
    assert task.status == TaskStatus.RUNNING
    assert task.end_time is None
    assert task.start_time.tzinfo is not None
    assert repository.get_task(task.id) == task


def test_ids_are_monotonic_even_after_delete(repository: TaskRepository) -> None:
    first = _create(repository, "a")
    assert repository.finish_task(first.id, TaskStatus.STOPPED)
    assert repository.delete_task(first.id)

    second = _create(repository, "b")
    assert second.id > first.id


def test_list_tasks_newest_first(repository: TaskRepository) -> None:
    ids = [_create(repository, name).id for name in ("a", "b", "c")]

    assert [task.id for task in repository.list_tasks()] == list(reversed(ids))


def test_finish_task_sets_end_time_once(repository: TaskRepository) -> None:
    task = _create(repository)

    assert repository.finish_task(task.id, TaskStatus.STOPPED) is True
    assert repository.finish_task(task.id, TaskStatus.CRASHED) is False

    stored = repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.STOPPED
    assert stored.end_time is not None


def test_finish_task_rejects_running_status(repository: TaskRepository) -> None:
    task = _create(repository)

    with pytest.raises(ValueError, match="Unsupported terminal status"):
        repository.finish_task(task.id, TaskStatus.RUNNING)


def test_finish_unknown_task_returns_false(repository: TaskRepository) -> None:
    assert repository.finish_task(999, TaskStatus.CRASHED) is False


def test_get_missing_task_returns_none(repository: TaskRepository) -> None:
    assert repository.get_task(12345) is None


def test_delete_never_removes_running_tasks(repository: TaskRepository) -> None:
    task = _create(repository)

    assert repository.delete_task(task.id) is False
    assert repository.get_task(task.id) is not None


def test_list_tasks_ended_before_skips_running_and_recent(repository: TaskRepository) -> None:
    running = _create(repository, "running")
    recent = _create(repository, "recent")
    old = _create(repository, "old")
    repository.finish_task(recent.id, TaskStatus.STOPPED)
    repository.finish_task(old.id, TaskStatus.CRASHED)
    _set_end_time(repository, old.id, days_ago=3)

    expired = repository.list_tasks_ended_before(utc_now() - timedelta(days=1))

    assert [task.id for task in expired] == [old.id]
    assert running.id not in {task.id for task in expired}


def test_end_time_invariant_holds_for_every_record(repository: TaskRepository) -> None:
    tasks = [_create(repository, name) for name in ("a", "b", "c")]
    repository.finish_task(tasks[0].id, TaskStatus.STOPPED)
    repository.finish_task(tasks[1].id, TaskStatus.CRASHED)

    for task in repository.list_tasks():
        assert (task.end_time is not None) == (task.status != TaskStatus.RUNNING)
