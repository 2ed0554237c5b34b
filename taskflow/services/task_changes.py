"""
Task change-sets shared by the edit-request workflow and direct edits.

A change-set is a dict holding only the fields being changed:
    title, description, due_date (ISO string), priority, assignee_ids
"""

import logging

from taskflow.core.exceptions import ValidationError
from taskflow.models import db
from taskflow.models.task import TASK_PRIORITIES, Task, TaskAssignee
from taskflow.services.assignment_service import add_assignees, check_users_exist, current_assignee_ids
from taskflow.utils.errors import E
from taskflow.utils.helpers import is_blank, parse_date_input

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "due_date", "priority", "assignee_ids")

NO_CHANGES_MESSAGE = "At least one field must be changed"


def normalize_changes(raw: dict | None, task: Task | None = None) -> dict:
    """Validate and canonicalise a change-set.

    ``None`` values count as "not set". When ``task`` is given, values equal
    to the task's current ones are dropped too.

    Raises:
        ValidationError: unknown field, bad value, or nothing left to change.
    """
    raw = raw or {}
    unknown = sorted(set(raw) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}", details={"fields": unknown})

    changes = {}
    if raw.get("title") is not None:
        if is_blank(raw["title"]):
            raise ValidationError("Title cannot be empty", code=E.VALIDATION_REQUIRED)
        changes["title"] = str(raw["title"]).strip()
    if raw.get("description") is not None:
        changes["description"] = str(raw["description"])
    if raw.get("priority") is not None:
        if raw["priority"] not in TASK_PRIORITIES:
            raise ValidationError(
                f"Invalid priority: {raw['priority']}. Allowed: {', '.join(TASK_PRIORITIES)}",
            )
        changes["priority"] = raw["priority"]
    if raw.get("due_date") is not None:
        try:
            changes["due_date"] = parse_date_input(raw["due_date"]).isoformat()
        except (ValueError, AttributeError) as exc:
            raise ValidationError(str(exc)) from exc
    if raw.get("assignee_ids") is not None:
        try:
            changes["assignee_ids"] = sorted({int(uid) for uid in raw["assignee_ids"]})
        except (TypeError, ValueError) as exc:
            raise ValidationError("assignee_ids must be a list of user ids") from exc

    if task is not None:
        current = {
            "title": task.title,
            "description": task.description,
            "priority": task.priority,
            "due_date": task.due_date.isoformat() if task.due_date else None,
            "assignee_ids": task.assignee_ids(),
        }
        changes = {k: v for k, v in changes.items() if current[k] != v}

    if not changes:
        raise ValidationError(NO_CHANGES_MESSAGE, code=E.VALIDATION_NO_CHANGES)
    return changes


def apply_changes(task: Task, changes: dict, actor_id: int | None) -> list[str]:
    """Copy a normalised change-set onto the task; no commit.

    The assignee set is reconciled: users not in the new set are removed,
    missing ones are added.

    Returns:
        Names of the fields that were applied.
    """
    applied = []
    for name in ("title", "description", "priority"):
        if name in changes:
            setattr(task, name, changes[name])
            applied.append(name)
    if "due_date" in changes:
        task.due_date = parse_date_input(changes["due_date"])
        applied.append("due_date")
    if "assignee_ids" in changes:
        wanted = set(changes["assignee_ids"])
        if wanted:
            check_users_exist(sorted(wanted))
        stale = current_assignee_ids(task.id) - wanted
        if stale:
            for row in TaskAssignee.query.filter(
                TaskAssignee.task_id == task.id, TaskAssignee.user_id.in_(stale)
            ).all():
                db.session.delete(row)
            db.session.flush()
        add_assignees(task.id, wanted, actor_id)
        applied.append("assignee_ids")
    db.session.flush()
    return applied
