"""
Assignment Service — task ↔ user mapping.

Re-assigning an already-assigned user is a no-op, and removing a mapping
that does not exist is not an error. ``replace_all`` deletes and inserts in
one transaction, so a failure leaves the previous assignee set intact.

Usage:
    from taskflow.services import assignment_service

    assignment_service.assign(task_id, [3, 4], assigned_by=1)
    assignment_service.replace_all(task_id, [4, 5], assigned_by=1)
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from taskflow.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from taskflow.models import db
from taskflow.models.task import Task, TaskAssignee
from taskflow.models.user import User
from taskflow.services.notification_service import NotificationService
from taskflow.services.helpers.task_queries import get_live_task
from taskflow.services.user_service import get_active_user
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


def _dedupe(user_ids) -> list[int]:
    return list(dict.fromkeys(int(uid) for uid in user_ids))


def _check_assigner(assigned_by: int) -> None:
    actor = get_active_user(assigned_by)
    if not actor.is_privileged:
        raise PermissionDenied("Only admins can manage task assignees", user_id=assigned_by)


def check_users_exist(user_ids: list[int]) -> None:
    user_ids = _dedupe(user_ids)
    found = set(db.session.execute(
        select(User.id).where(User.id.in_(user_ids), User.deleted_at.is_(None))
    ).scalars())
    missing = [uid for uid in user_ids if uid not in found]
    if missing:
        raise NotFoundError("User", missing[0])


def current_assignee_ids(task_id: int) -> set[int]:
    return set(db.session.execute(
        select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id)
    ).scalars())


def add_assignees(task_id: int, user_ids, assigned_by: int | None) -> list[int]:
    """Stage inserts for users not yet assigned; no commit.

    Returns:
        The user ids that were newly added.
    """
    existing = current_assignee_ids(task_id)
    added = [uid for uid in _dedupe(user_ids) if uid not in existing]
    for uid in added:
        db.session.add(TaskAssignee(task_id=task_id, user_id=uid, assigned_by=assigned_by))
    return added


def assign(task_id: int, user_ids, assigned_by: int) -> dict:
    """Assign users to a task (idempotent per user).

    Raises:
        ValidationError: ``user_ids`` is empty.
    """
    user_ids = _dedupe(user_ids or [])
    if not user_ids:
        raise ValidationError("At least one user must be selected", code=E.VALIDATION_REQUIRED)
    _check_assigner(assigned_by)
    task = get_live_task(task_id)
    check_users_exist(user_ids)

    added = add_assignees(task.id, user_ids, assigned_by)
    commit_or_raise("User is already assigned to this task")
    logger.info("Assigned task=%s users=%s by=%s", task.id, added, assigned_by)

    if added:
        NotificationService.notify_task_assigned(task, added)
    return {"task_id": task.id, "added": added, "assignee_ids": sorted(current_assignee_ids(task.id))}


def unassign(task_id: int, user_id: int, removed_by: int | None = None) -> dict:
    """Remove one mapping. Removing a mapping that does not exist succeeds.

    When ``removed_by`` is given the caller must be an admin.
    """
    if removed_by is not None:
        _check_assigner(removed_by)
    rows = TaskAssignee.query.filter_by(task_id=task_id, user_id=user_id).all()
    for row in rows:
        db.session.delete(row)
    removed = len(rows)
    commit_or_raise()
    if removed:
        logger.info("Unassigned task=%s user=%s", task_id, user_id)
    return {"task_id": task_id, "user_id": user_id, "removed": bool(removed)}


def replace_all(task_id: int, user_ids, assigned_by: int) -> dict:
    """Replace the whole assignee set in one transaction.

    An empty ``user_ids`` leaves the task unassigned.
    """
    user_ids = _dedupe(user_ids or [])
    _check_assigner(assigned_by)
    task = get_live_task(task_id)
    if user_ids:
        check_users_exist(user_ids)

    previous = current_assignee_ids(task.id)
    for row in TaskAssignee.query.filter_by(task_id=task.id).all():
        db.session.delete(row)
    db.session.flush()
    for uid in user_ids:
        db.session.add(TaskAssignee(task_id=task.id, user_id=uid, assigned_by=assigned_by))
    commit_or_raise()

    added = [uid for uid in user_ids if uid not in previous]
    logger.info("Replaced assignees task=%s new=%s by=%s", task.id, user_ids, assigned_by)
    if added:
        NotificationService.notify_task_assigned(task, added)
    return {"task_id": task.id, "added": added, "assignee_ids": sorted(user_ids)}


def list_for_task(task_id: int) -> list[dict]:
    """Assignee records joined with user profile and role, oldest first.

    If the user lookup fails the rows are still returned, with ``user: None``.
    """
    rows = (
        TaskAssignee.query.filter_by(task_id=task_id)
        .order_by(TaskAssignee.assigned_at, TaskAssignee.id)
        .all()
    )
    users = {}
    if rows:
        try:
            users = {
                u.id: u for u in
                db.session.execute(select(User).where(User.id.in_([r.user_id for r in rows]))).scalars()
            }
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Assignee user lookup failed task=%s, returning bare rows", task_id, exc_info=True)

    result = []
    for row in rows:
        d = row.to_dict()
        user = users.get(row.user_id)
        d["user"] = (
            {"id": user.id, "email": user.email, "full_name": user.full_name, "role": user.role}
            if user else None
        )
        result.append(d)
    return result


def is_assigned(task_id: int, user_id: int) -> bool:
    return db.session.execute(
        select(TaskAssignee.id).where(TaskAssignee.task_id == task_id, TaskAssignee.user_id == user_id)
    ).first() is not None


def list_tasks_for_user(user_id: int) -> list[Task]:
    """Non-deleted tasks the user is assigned to, newest first."""
    return (
        Task.query_active()
        .join(TaskAssignee, TaskAssignee.task_id == Task.id)
        .filter(TaskAssignee.user_id == user_id)
        .order_by(Task.created_at.desc(), Task.id.desc())
        .all()
    )
