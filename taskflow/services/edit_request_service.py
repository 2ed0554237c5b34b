"""
Edit Request Service.

Admins propose field changes to a task; a super admin approves (changes are
applied) or rejects (comments mandatory). States:

    pending → approved | rejected      (both terminal)

At most one pending request per task: checked up front for a friendly
message and enforced by the ``uq_task_edit_requests_one_pending`` index,
so two concurrent creators end with exactly one pending row.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import aliased

from taskflow.core.exceptions import ConflictError, NotFoundError, PermissionDenied, TransitionError, ValidationError
from taskflow.models import db
from taskflow.models.task import Task, TaskEditRequest
from taskflow.models.user import User
from taskflow.services.helpers.task_queries import get_live_task
from taskflow.services.notification_service import NotificationService
from taskflow.services.task_changes import apply_changes, normalize_changes
from taskflow.services.user_service import get_active_user
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise, is_blank

logger = logging.getLogger(__name__)

PENDING_EXISTS_MESSAGE = "A pending edit request already exists for this task"


def _get_request(request_id: int) -> TaskEditRequest:
    req = db.session.get(TaskEditRequest, request_id)
    if req is None:
        raise NotFoundError("Edit request", request_id)
    return req


def _require_super_admin(user_id: int, message: str) -> User:
    actor = get_active_user(user_id)
    if not actor.is_super_admin:
        raise PermissionDenied(message, user_id=user_id)
    return actor


def _require_pending(req: TaskEditRequest) -> None:
    if req.status != "pending":
        raise TransitionError(
            "Edit request is not pending", action="resolve", current=req.status, code=E.REQUEST_NOT_PENDING,
        )


def has_pending(task_id: int) -> bool:
    return TaskEditRequest.query.filter_by(task_id=task_id, status="pending").first() is not None


# ── Create ───────────────────────────────────────────────────────────────────

def create(task_id: int, requested_by: int, proposed_changes: dict) -> TaskEditRequest:
    """Open a pending edit request.

    Raises:
        ValidationError: nothing to change (checked before any query).
        ConflictError: a pending request already exists for the task.
    """
    changes = normalize_changes(proposed_changes)

    actor = get_active_user(requested_by)
    if not actor.is_privileged:
        raise PermissionDenied("Only admins can request task edits", user_id=requested_by)
    task = get_live_task(task_id)
    changes = normalize_changes(changes, task=task)

    if has_pending(task.id):
        raise ConflictError(PENDING_EXISTS_MESSAGE, code=E.CONFLICT_PENDING_REQUEST)

    req = TaskEditRequest(task_id=task.id, requested_by=actor.id, proposed_changes=changes, status="pending")
    db.session.add(req)
    commit_or_raise(PENDING_EXISTS_MESSAGE, conflict_code=E.CONFLICT_PENDING_REQUEST)
    logger.info("Edit request created id=%s task=%s fields=%s by=%s",
                req.id, task.id, sorted(changes), actor.id)

    NotificationService.notify_edit_request_created(req, task)
    return req


# ── Resolve ──────────────────────────────────────────────────────────────────

def approve(request_id: int, reviewer_id: int, comments: str | None = None) -> dict:
    """Apply the proposed changes and mark the request approved, atomically.

    Returns:
        {"success", "message", "request", "task", "applied_fields"}
    """
    _require_super_admin(reviewer_id, "Only Super Admin can approve edit requests")
    req = _get_request(request_id)
    _require_pending(req)
    task = db.session.get(Task, req.task_id)
    if task is None or task.is_deleted:
        raise TransitionError(
            "Cannot edit soft-deleted task", action="approve", current=req.status, code=E.TASK_DELETED,
        )

    applied = apply_changes(task, req.proposed_changes or {}, reviewer_id)
    req.status = "approved"
    req.reviewed_by = reviewer_id
    req.reviewed_at = datetime.now(timezone.utc)
    if not is_blank(comments):
        req.comments = comments.strip()
    commit_or_raise()
    logger.info("Edit request approved id=%s task=%s fields=%s by=%s", req.id, task.id, applied, reviewer_id)

    NotificationService.notify_edit_request_resolved(req, task)
    return {
        "success": True,
        "message": "Edit request approved and changes applied",
        "request": req.to_dict(),
        "task": task.to_dict(),
        "applied_fields": applied,
    }


def reject(request_id: int, reviewer_id: int, comments: str) -> dict:
    """Reject a pending request. Comments are mandatory."""
    if is_blank(comments):
        raise ValidationError("Comments are required when rejecting an edit request", code=E.VALIDATION_REQUIRED)
    _require_super_admin(reviewer_id, "Only Super Admin can reject edit requests")
    req = _get_request(request_id)
    _require_pending(req)

    req.status = "rejected"
    req.reviewed_by = reviewer_id
    req.reviewed_at = datetime.now(timezone.utc)
    req.comments = comments.strip()
    commit_or_raise()
    logger.info("Edit request rejected id=%s task=%s by=%s", req.id, req.task_id, reviewer_id)

    task = db.session.get(Task, req.task_id)
    if task is not None:
        NotificationService.notify_edit_request_resolved(req, task)
    return {"success": True, "message": "Edit request rejected", "request": req.to_dict()}


# ── Query ────────────────────────────────────────────────────────────────────

def list_pending() -> list[TaskEditRequest]:
    """Pending requests on non-deleted tasks, newest first."""
    return (
        TaskEditRequest.query
        .join(Task, Task.id == TaskEditRequest.task_id)
        .filter(TaskEditRequest.status == "pending", Task.deleted_at.is_(None))
        .order_by(TaskEditRequest.created_at.desc(), TaskEditRequest.id.desc())
        .all()
    )


def list_for_task(task_id: int) -> list[TaskEditRequest]:
    """All requests for a task, newest first."""
    return (
        TaskEditRequest.query.filter_by(task_id=task_id)
        .order_by(TaskEditRequest.created_at.desc(), TaskEditRequest.id.desc())
        .all()
    )


def history(task_id: int) -> list[dict]:
    """Edit history with requester and reviewer names, newest first."""
    requester = aliased(User)
    reviewer = aliased(User)
    rows = (
        db.session.query(TaskEditRequest, requester.full_name, reviewer.full_name)
        .outerjoin(requester, requester.id == TaskEditRequest.requested_by)
        .outerjoin(reviewer, reviewer.id == TaskEditRequest.reviewed_by)
        .filter(TaskEditRequest.task_id == task_id)
        .order_by(TaskEditRequest.created_at.desc(), TaskEditRequest.id.desc())
        .all()
    )
    result = []
    for req, requester_name, reviewer_name in rows:
        d = req.to_dict()
        d["requested_by_name"] = requester_name
        d["reviewed_by_name"] = reviewer_name
        result.append(d)
    return result
