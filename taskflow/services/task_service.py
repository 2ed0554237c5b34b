"""
Task Service — creation, queries, soft delete, restore and permanent removal.

Lifecycle transitions live in ``task_lifecycle``; field edits go through
``edit_request_service`` or ``direct_edit``.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import or_

from taskflow.core.exceptions import NotFoundError, PermissionDenied, TransitionError, ValidationError
from taskflow.models import db
from taskflow.models.project import Project
from taskflow.models.task import TASK_PRIORITIES, Task, TaskAssignee, TaskEditRequest, TaskFile, TaskState
from taskflow.services import storage_service
from taskflow.services.assignment_service import add_assignees, check_users_exist
from taskflow.services.helpers.task_queries import get_task
from taskflow.services.notification_service import NotificationService
from taskflow.services.user_service import get_active_user
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise, escape_like, is_blank, parse_date_input

logger = logging.getLogger(__name__)

PURGE_RETENTION_DAYS = 30
PURGE_BATCH_LIMIT = 500


def create_task(*, title, created_by, description="", priority="medium", due_date=None,
                project_id=None, assignee_ids=None) -> Task:
    """Create a task in ToDo with zero or more assignees (one transaction)."""
    if is_blank(title):
        raise ValidationError("Title is required", code=E.VALIDATION_REQUIRED)
    if priority not in TASK_PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}. Allowed: {', '.join(TASK_PRIORITIES)}")
    try:
        due = parse_date_input(due_date)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    creator = get_active_user(created_by)
    if not creator.is_privileged:
        raise PermissionDenied("Only admins can create tasks", user_id=created_by)

    if project_id is not None:
        project = db.session.get(Project, project_id)
        if project is None or project.is_deleted:
            raise NotFoundError("Project", project_id)
        if project.status == "closed":
            raise ValidationError("Cannot add tasks to a closed project")

    task = Task(
        title=title.strip(),
        description=description or "",
        priority=priority,
        due_date=due,
        project_id=project_id,
        task_status=TaskState.TODO.value,
        created_by=creator.id,
    )
    if assignee_ids:
        check_users_exist(list(assignee_ids))

    db.session.add(task)
    db.session.flush()
    added = add_assignees(task.id, assignee_ids or [], creator.id)
    commit_or_raise()
    logger.info("Task created id=%s project=%s assignees=%s by=%s", task.id, project_id, added, creator.id)

    if added:
        NotificationService.notify_task_assigned(task, added)
    return task


def list_tasks(*, project_id=None, task_status=None, assignee_id=None, include_deleted=False,
               search=None) -> list[Task]:
    """Tasks newest first, filtered."""
    q = Task.query if include_deleted else Task.query_active()
    if project_id is not None:
        q = q.filter(Task.project_id == project_id)
    if task_status:
        q = q.filter(Task.task_status == task_status)
    if assignee_id is not None:
        q = q.join(TaskAssignee, TaskAssignee.task_id == Task.id).filter(TaskAssignee.user_id == assignee_id)
    if search:
        like = f"%{escape_like(search.strip())}%"
        q = q.filter(or_(Task.title.ilike(like, escape="\\"), Task.description.ilike(like, escape="\\")))
    return q.order_by(Task.created_at.desc(), Task.id.desc()).all()


def soft_delete_task(task_id: int, deleted_by: int) -> dict:
    """Hide a task (super admin only). Refused while edit requests are pending."""
    actor = get_active_user(deleted_by)
    if not actor.is_super_admin:
        raise PermissionDenied("Only Super Admin can delete tasks", user_id=deleted_by)
    task = get_task(task_id, include_deleted=True)
    if task.is_deleted:
        raise TransitionError("Task is already deleted", action="delete", code=E.TASK_DELETED)
    if TaskEditRequest.query.filter_by(task_id=task.id, status="pending").count():
        raise TransitionError(
            "Cannot delete task with pending edit requests. Please approve or reject all requests first.",
            action="delete", current=task.task_status, code=E.CONFLICT_PENDING_REQUEST,
        )

    task.soft_delete(deleted_by=actor.id)
    commit_or_raise()
    logger.info("Task soft-deleted id=%s by=%s", task.id, actor.id)
    return {"success": True, "message": "Task deleted successfully", "task_id": task.id}


def restore_task(task_id: int, restored_by: int) -> dict:
    actor = get_active_user(restored_by)
    if not actor.is_super_admin:
        raise PermissionDenied("Only Super Admin can restore tasks", user_id=restored_by)
    task = get_task(task_id, include_deleted=True)
    if not task.is_deleted:
        raise TransitionError("Task is not deleted", action="restore", current=task.task_status)

    task.restore()
    commit_or_raise()
    logger.info("Task restored id=%s by=%s", task.id, actor.id)
    return {"success": True, "message": "Task restored successfully", "task": task.to_dict()}


def list_deleted_tasks() -> list[Task]:
    """Soft-deleted tasks, most recently deleted first."""
    return Task.query_deleted().order_by(Task.deleted_at.desc(), Task.id.desc()).all()


# ── Permanent removal ────────────────────────────────────────────────────────

def _delete_permanently(tasks) -> list[int]:
    """Delete task rows in one transaction, then their attachment blobs.

    Assignees, edit requests, progress log entries and file records go with
    the task through ON DELETE CASCADE.
    """
    ids = [t.id for t in tasks]
    if not ids:
        return []
    paths = [path for (path,) in db.session.query(TaskFile.storage_path).filter(TaskFile.task_id.in_(ids))]
    for task in tasks:
        db.session.delete(task)
    commit_or_raise()
    storage_service.remove_blobs(storage_service.TASK_FILES_BUCKET, paths)
    return ids


def hard_delete_task(task_id: int, deleted_by: int) -> dict:
    """Permanently remove a task that is already soft-deleted (super admin only)."""
    actor = get_active_user(deleted_by)
    if not actor.is_super_admin:
        raise PermissionDenied("Only Super Admin can permanently delete tasks", user_id=deleted_by)
    task = get_task(task_id, include_deleted=True)
    if not task.is_deleted:
        raise TransitionError(
            "Task must be soft-deleted before hard deletion",
            action="hard_delete", current=task.task_status,
        )

    _delete_permanently([task])
    logger.info("Task permanently deleted id=%s by=%s", task_id, actor.id)
    return {"success": True, "message": "Task permanently deleted", "task_id": task_id}


def purge_soft_deleted_tasks(cutoff_days=PURGE_RETENTION_DAYS, limit=PURGE_BATCH_LIMIT, *,
                             requested_by, now=None) -> dict:
    """Permanently remove tasks soft-deleted more than ``cutoff_days`` ago.

    Oldest deletions go first, at most ``limit`` tasks per call.

    Returns:
        {"success", "purged_tasks", "task_ids", "cutoff_days"}
    """
    actor = get_active_user(requested_by)
    if not actor.is_super_admin:
        raise PermissionDenied("Only Super Admin can purge deleted tasks", user_id=requested_by)
    if cutoff_days < 0:
        raise ValidationError("cutoff_days must not be negative")
    if limit < 1:
        raise ValidationError("limit must be at least 1")

    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=cutoff_days)
    tasks = (
        Task.query_deleted()
        .filter(Task.deleted_at < cutoff)
        .order_by(Task.deleted_at, Task.id)
        .limit(limit)
        .all()
    )
    ids = _delete_permanently(tasks)
    logger.info("Purged soft-deleted tasks count=%d cutoff_days=%s by=%s", len(ids), cutoff_days, actor.id)
    return {"success": True, "purged_tasks": len(ids), "task_ids": ids, "cutoff_days": cutoff_days}
