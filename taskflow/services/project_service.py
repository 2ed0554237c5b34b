"""
Project Service.

Closing a project closes every live task in it that is not already Closed,
tagging them ``closed_reason = "project_closed"`` and remembering the state
they were in. Reopening restores only those tagged tasks; tasks closed on
their own stay Closed.
"""

import logging
from datetime import datetime, timezone

from taskflow.core.exceptions import NotFoundError, PermissionDenied, TransitionError, ValidationError
from taskflow.models import db
from taskflow.models.project import PROJECT_STATUSES, Project
from taskflow.models.task import Task, TaskProgressLog, TaskState
from taskflow.services.notification_service import NotificationService
from taskflow.services.user_service import get_active_user
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise, is_blank

logger = logging.getLogger(__name__)

PROJECT_CLOSED_REASON = "project_closed"


def _require_privileged(user_id: int, message: str):
    actor = get_active_user(user_id)
    if not actor.is_privileged:
        raise PermissionDenied(message, user_id=user_id)
    return actor


def create_project(*, name, created_by, description="") -> Project:
    if is_blank(name):
        raise ValidationError("Project name is required", code=E.VALIDATION_REQUIRED)
    actor = _require_privileged(created_by, "Only admins can create projects")
    project = Project(name=name.strip(), description=description or "", created_by=actor.id)
    db.session.add(project)
    commit_or_raise()
    logger.info("Project created id=%s by=%s", project.id, actor.id)
    return project


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None or project.is_deleted:
        raise NotFoundError("Project", project_id)
    return project


def list_projects(*, status=None) -> list[Project]:
    q = Project.query_active()
    if status:
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"Invalid project status: {status}")
        q = q.filter_by(status=status)
    return q.order_by(Project.created_at.desc(), Project.id.desc()).all()


def _log(task: Task, user_id: int, note: str) -> None:
    db.session.add(TaskProgressLog(
        task_id=task.id, user_id=user_id, status=task.task_status,
        progress_note=note, created_by=user_id,
    ))


def close_project(project_id: int, user_id: int) -> dict:
    """Close the project and cascade to its open tasks in one transaction.

    Returns:
        {"success", "message", "project", "closed_task_count", "closed_task_ids"}
    """
    actor = _require_privileged(user_id, "Only admins can close projects")
    project = get_project(project_id)
    if project.status == "closed":
        raise TransitionError("Project is already closed", action="close", current=project.status)

    now = datetime.now(timezone.utc)
    tasks = (
        Task.query_active()
        .filter(Task.project_id == project.id, Task.task_status != TaskState.CLOSED.value)
        .all()
    )
    for task in tasks:
        task.status_before_closure = task.task_status
        task.task_status = TaskState.CLOSED.value
        task.closed_reason = PROJECT_CLOSED_REASON
        task.closed_at = now
        task.archived_by = actor.id
        _log(task, actor.id, f'Closed because project "{project.name}" was closed')
    project.status = "closed"
    commit_or_raise()

    task_ids = [t.id for t in tasks]
    logger.info("Project closed id=%s tasks=%s by=%s", project.id, task_ids, actor.id)
    NotificationService.notify_project_status(project, task_ids, closed=True, actor_id=actor.id)
    return {
        "success": True,
        "message": f"Project closed; {len(task_ids)} task(s) closed",
        "project": project.to_dict(),
        "closed_task_count": len(task_ids),
        "closed_task_ids": task_ids,
    }


def reopen_project(project_id: int, user_id: int) -> dict:
    """Reopen the project and restore the tasks it closed.

    Returns:
        {"success", "message", "project", "reopened_task_count", "reopened_task_ids"}
    """
    actor = _require_privileged(user_id, "Only admins can reopen projects")
    project = get_project(project_id)
    if project.status != "closed":
        raise TransitionError("Project is not closed", action="reopen", current=project.status)

    tasks = (
        Task.query_active()
        .filter(Task.project_id == project.id, Task.closed_reason == PROJECT_CLOSED_REASON)
        .all()
    )
    for task in tasks:
        task.task_status = task.status_before_closure or TaskState.WORK_IN_PROGRESS.value
        task.status_before_closure = None
        task.closed_reason = None
        task.closed_at = None
        if task.reviewed_by is None:
            task.reviewed_at = None
        _log(task, actor.id, f'Restored because project "{project.name}" was reopened')
    project.status = "active"
    commit_or_raise()

    task_ids = [t.id for t in tasks]
    logger.info("Project reopened id=%s tasks=%s by=%s", project.id, task_ids, actor.id)
    NotificationService.notify_project_status(project, task_ids, closed=False, actor_id=actor.id)
    return {
        "success": True,
        "message": f"Project reopened; {len(task_ids)} task(s) restored",
        "project": project.to_dict(),
        "reopened_task_count": len(task_ids),
        "reopened_task_ids": task_ids,
    }
