"""
Direct edit: a super admin changes a task immediately.

The change still leaves an audit trail as an already-approved edit
request, written in the same transaction as the task update.
"""

import logging
from datetime import datetime, timezone

from taskflow.core.exceptions import PermissionDenied
from taskflow.models import db
from taskflow.models.task import TaskEditRequest
from taskflow.services.helpers.task_queries import get_live_task
from taskflow.services.task_changes import apply_changes, normalize_changes
from taskflow.services.user_service import get_active_user
from taskflow.utils.helpers import commit_or_raise, is_blank

logger = logging.getLogger(__name__)

DEFAULT_COMMENT = "Direct edit by Super Admin"


def direct_edit(task_id: int, edited_by: int, changes: dict, comments: str | None = None) -> dict:
    """Apply ``changes`` to the task and record an approved edit request.

    Returns:
        {"success", "message", "task", "request", "applied_fields"}

    Raises:
        ValidationError: nothing to change (checked before any query).
        PermissionDenied: editor is not a super admin.
    """
    changes = normalize_changes(changes)

    editor = get_active_user(edited_by)
    if not editor.is_super_admin:
        raise PermissionDenied("Only Super Admin can edit tasks directly", user_id=edited_by)
    task = get_live_task(task_id)
    changes = normalize_changes(changes, task=task)

    applied = apply_changes(task, changes, editor.id)
    now = datetime.now(timezone.utc)
    audit = TaskEditRequest(
        task_id=task.id,
        requested_by=editor.id,
        proposed_changes=changes,
        status="approved",
        reviewed_by=editor.id,
        reviewed_at=now,
        comments=DEFAULT_COMMENT if is_blank(comments) else comments.strip(),
    )
    db.session.add(audit)
    commit_or_raise()
    logger.info("Direct edit task=%s fields=%s by=%s", task.id, applied, editor.id)

    return {
        "success": True,
        "message": "Task updated",
        "task": task.to_dict(),
        "request": audit.to_dict(),
        "applied_fields": applied,
    }
