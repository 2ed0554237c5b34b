"""
Task lookup helpers.

Every lifecycle, assignment and edit operation resolves its task through
these helpers so a soft-deleted task is rejected the same way everywhere.

Usage:
    task = get_live_task(task_id)                  # raises if missing or deleted
    task = get_task(task_id, include_deleted=True)  # raises only if missing
"""

from taskflow.core.exceptions import NotFoundError
from taskflow.models import db
from taskflow.models.task import Task

TASK_NOT_FOUND_MESSAGE = "Task not found or deleted"


def get_task(task_id: int, *, include_deleted: bool = False) -> Task:
    """Fetch a task by primary key.

    Raises:
        NotFoundError: no row, or the row is soft-deleted and
            ``include_deleted`` is False.
    """
    task = db.session.get(Task, task_id) if task_id is not None else None
    if task is None or (task.is_deleted and not include_deleted):
        raise NotFoundError("Task", task_id, message=TASK_NOT_FOUND_MESSAGE)
    return task


def get_live_task(task_id: int) -> Task:
    return get_task(task_id)


def get_live_task_for_update(task_id: int) -> Task:
    """Like ``get_live_task`` but locks the row where the dialect supports it."""
    task = (
        db.session.query(Task)
        .filter(Task.id == task_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if task is None or task.is_deleted:
        raise NotFoundError("Task", task_id, message=TASK_NOT_FOUND_MESSAGE)
    return task
