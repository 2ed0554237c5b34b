"""
Task Lifecycle Service.

Manages task status transitions with:
  - A pure transition table: (state, action, role, is_assignee) → plan | rejection
  - One database transaction per transition (status change + progress log)
  - Review / archive stamps applied as plan effects
  - Fire-and-forget notifications after commit

5 valid transitions:
  start_work      ToDo             → Work-In-Progress   (assignee)
  request_review  Work-In-Progress → Done               (assignee)
  approve         Done             → Closed             (super_admin)
  reject          Done             → Work-In-Progress   (super_admin, comments required)
  reopen          Closed           → Work-In-Progress   (super_admin)

Usage:
    from taskflow.services import task_lifecycle

    result = task_lifecycle.start_work(task_id=7, user_id=3, note="Picked up")
    result = task_lifecycle.reject_and_reopen(7, reviewer_id=1, comments="needs more detail")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from taskflow.core.exceptions import PermissionDenied, TransitionError, ValidationError
from taskflow.models import db
from taskflow.models.task import Task, TaskProgressLog, TaskState
from taskflow.models.user import ROLE_SUPER_ADMIN
from taskflow.services.assignment_service import is_assigned
from taskflow.services.helpers.task_queries import get_live_task, get_live_task_for_update
from taskflow.services.notification_service import NotificationService
from taskflow.services.user_service import get_active_user
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise, is_blank

logger = logging.getLogger(__name__)


class TaskAction(str, Enum):
    START_WORK = "start_work"
    REQUEST_REVIEW = "request_review"
    APPROVE = "approve"
    REJECT = "reject"
    REOPEN = "reopen"


# Actor kinds
ASSIGNEE = "assignee"
SUPER_ADMIN = "super_admin"

# Task transition rules
TRANSITIONS = {
    TaskAction.START_WORK: {
        "from": [TaskState.TODO],
        "to": TaskState.WORK_IN_PROGRESS,
        "actor": ASSIGNEE,
        "effects": (),
        "log": "Work started",
        "message": "Task started successfully",
    },
    TaskAction.REQUEST_REVIEW: {
        "from": [TaskState.WORK_IN_PROGRESS],
        "to": TaskState.DONE,
        "actor": ASSIGNEE,
        "effects": ("request_review", "notify_reviewers"),
        "log": "Task marked as done, review requested",
        "message": "Task marked as done and review requested",
    },
    TaskAction.APPROVE: {
        "from": [TaskState.DONE],
        "to": TaskState.CLOSED,
        "actor": SUPER_ADMIN,
        "effects": ("stamp_review", "archive", "notify_assignees"),
        "log": "Task approved and closed",
        "message": "Task approved and closed successfully",
    },
    TaskAction.REJECT: {
        "from": [TaskState.DONE],
        "to": TaskState.WORK_IN_PROGRESS,
        "actor": SUPER_ADMIN,
        "effects": ("stamp_review", "clear_review_request", "notify_assignees"),
        "log": "Review rejected - returned to Work-In-Progress",
        "message": "Review rejected and task returned to Work-In-Progress",
    },
    TaskAction.REOPEN: {
        "from": [TaskState.CLOSED],
        "to": TaskState.WORK_IN_PROGRESS,
        "actor": SUPER_ADMIN,
        "effects": ("unarchive", "clear_review"),
        "log": "Task reopened (unarchived)",
        "message": "Task reopened successfully",
    },
}

_STATE_MESSAGES = {
    TaskAction.REQUEST_REVIEW: "Can only request review for tasks in Work-In-Progress state",
    TaskAction.APPROVE: "Can only approve tasks in Done state",
    TaskAction.REJECT: "Can only reject review for tasks in Done state",
    TaskAction.REOPEN: "Only Closed tasks can be reopened",
}

_ROLE_MESSAGES = {
    TaskAction.APPROVE: "Only Super Admin can approve and close tasks",
    TaskAction.REJECT: "Only Super Admin can reject reviews",
    TaskAction.REOPEN: "Only Super Admin can reopen closed tasks",
}

ALREADY_STARTED_MESSAGE = "Task is already in progress or beyond"


@dataclass(frozen=True)
class TransitionPlan:
    """Outcome of a permitted transition. ``noop`` plans change nothing."""
    action: TaskAction
    previous: TaskState
    new_state: TaskState
    effects: tuple[str, ...] = field(default_factory=tuple)
    log_message: str = ""
    message: str = ""
    noop: bool = False


def plan_transition(state, action, role, *, is_assignee: bool) -> TransitionPlan:
    """Decide a transition without touching the database.

    Checks run in order: unknown action, closed-task guard, actor, state.
    ``start_work`` on a task already past ToDo is an accepted no-op.

    Raises:
        TransitionError: unknown action or wrong source state.
        PermissionDenied: actor is not an assignee / not a super admin.
    """
    state = TaskState(state)
    try:
        action = TaskAction(action)
    except ValueError:
        raise TransitionError(f"Unknown action: {action}", action=str(action), current=state.value) from None
    rule = TRANSITIONS[action]

    if action == TaskAction.REQUEST_REVIEW and state == TaskState.CLOSED:
        raise TransitionError(
            "Cannot modify Closed task", action=action.value, current=state.value, code=E.TASK_CLOSED,
        )

    if rule["actor"] == ASSIGNEE and not is_assignee:
        raise PermissionDenied("User is not assigned to this task", code=E.NOT_ASSIGNEE)
    if rule["actor"] == SUPER_ADMIN and role != ROLE_SUPER_ADMIN:
        raise PermissionDenied(_ROLE_MESSAGES[action])

    if state not in rule["from"]:
        if action == TaskAction.START_WORK:
            return TransitionPlan(action, state, state, message=ALREADY_STARTED_MESSAGE, noop=True)
        raise TransitionError(_STATE_MESSAGES[action], action=action.value, current=state.value)

    return TransitionPlan(
        action=action,
        previous=state,
        new_state=rule["to"],
        effects=rule["effects"],
        log_message=rule["log"],
        message=rule["message"],
    )


def available_actions(task: Task, role: str, is_assignee: bool) -> list[str]:
    """Actions the given actor could perform on the task right now."""
    actions = []
    for action in TaskAction:
        try:
            plan = plan_transition(task.task_status, action, role, is_assignee=is_assignee)
        except (TransitionError, PermissionDenied):
            continue
        if not plan.noop:
            actions.append(action.value)
    return actions


def action_between(current, target) -> TaskAction | None:
    """The action that moves ``current`` to ``target``, if the table has one."""
    current, target = TaskState(current), TaskState(target)
    for action, rule in TRANSITIONS.items():
        if current in rule["from"] and rule["to"] == target:
            return action
    return None


# ── Execution ────────────────────────────────────────────────────────────────

def _add_progress_log(task: Task, user_id: int, note: str | None) -> TaskProgressLog:
    entry = TaskProgressLog(
        task_id=task.id,
        user_id=user_id,
        status=task.task_status,
        progress_note=note,
        created_by=user_id,
    )
    db.session.add(entry)
    return entry


def _apply_effects(task: Task, plan: TransitionPlan, actor_id: int, comments: str | None) -> None:
    now = datetime.now(timezone.utc)
    for effect in plan.effects:
        if effect == "request_review":
            task.review_status = "pending_review"
            task.review_requested_by = actor_id
            task.review_requested_at = now
        elif effect == "stamp_review":
            task.reviewed_by = actor_id
            task.reviewed_at = now
            task.review_comments = comments
            task.review_status = (
                "reviewed_approved" if plan.action == TaskAction.APPROVE else "changes_requested"
            )
        elif effect == "archive":
            task.archived_at = now
            task.archived_by = actor_id
            task.closed_reason = "manual"
            task.closed_at = now
        elif effect == "clear_review_request":
            task.review_requested_at = None
            task.review_requested_by = None
        elif effect == "unarchive":
            task.archived_at = None
            task.archived_by = None
            task.closed_reason = None
            task.closed_at = None
            task.status_before_closure = None
        elif effect == "clear_review":
            task.review_status = "none"
            task.review_requested_at = None
            task.review_requested_by = None
            task.reviewed_at = None
            task.reviewed_by = None
            task.review_comments = None


def stage_transition(task: Task, action, actor, *, comments: str | None = None,
                     note: str | None = None) -> TransitionPlan:
    """Plan and apply a transition to ``task`` inside the caller's transaction; no commit.

    Writes the transition's progress-log entry, plus ``note`` as a second
    entry when given. A no-op plan changes nothing.
    """
    plan = plan_transition(
        task.task_status, action, actor.role, is_assignee=is_assigned(task.id, actor.id),
    )
    if plan.noop:
        return plan

    task.task_status = plan.new_state.value
    _apply_effects(task, plan, actor.id, comments)
    _add_progress_log(task, actor.id, plan.log_message)
    if not is_blank(note):
        _add_progress_log(task, actor.id, note.strip())
    return plan


def notify_transition(task: Task, plan: TransitionPlan, actor_id: int) -> None:
    """Send the plan's notifications; call after commit."""
    if plan.noop:
        return
    logger.info(
        "Task transition task=%s action=%s %s→%s by=%s",
        task.id, plan.action.value, plan.previous.value, plan.new_state.value, actor_id,
    )
    if "notify_reviewers" in plan.effects:
        NotificationService.notify_review_requested(task, actor_id)
    if "notify_assignees" in plan.effects:
        NotificationService.notify_review_completed(
            task, actor_id, approved=plan.action == TaskAction.APPROVE,
        )


def transition_task(task_id: int, action, user_id: int, *, comments: str | None = None,
                    note: str | None = None) -> dict:
    """
    Execute a task lifecycle transition in one transaction.

    Args:
        task_id: Task primary key.
        action: One of ``TaskAction``.
        user_id: Who is performing the action.
        comments: Review comments (approve / reject).
        note: Extra progress-log entry written after the transition's own entry.

    Returns:
        {"success", "message", "task_id", "previous_status", "new_status", "task"}

    Raises:
        NotFoundError, PermissionDenied, TransitionError
    """
    task = get_live_task_for_update(task_id)
    actor = get_active_user(user_id)
    plan = stage_transition(task, action, actor, comments=comments, note=note)
    if plan.noop:
        db.session.rollback()
    else:
        commit_or_raise()
        notify_transition(task, plan, actor.id)

    return {
        "success": True,
        "message": plan.message,
        "task_id": task.id,
        "previous_status": plan.previous.value,
        "new_status": plan.new_state.value,
        "task": task.to_dict(),
    }


# ── Public intents ───────────────────────────────────────────────────────────

def start_work(task_id: int, user_id: int, note: str | None = None) -> dict:
    return transition_task(task_id, TaskAction.START_WORK, user_id, note=note)


def request_review(task_id: int, user_id: int) -> dict:
    return transition_task(task_id, TaskAction.REQUEST_REVIEW, user_id)


mark_done = request_review


def approve_and_close(task_id: int, reviewer_id: int, comments: str | None = None) -> dict:
    comments = None if is_blank(comments) else comments.strip()
    return transition_task(task_id, TaskAction.APPROVE, reviewer_id, comments=comments)


def reject_and_reopen(task_id: int, reviewer_id: int, comments: str) -> dict:
    if is_blank(comments):
        raise ValidationError("Comments are required when rejecting review", code=E.VALIDATION_REQUIRED)
    return transition_task(task_id, TaskAction.REJECT, reviewer_id, comments=comments.strip())


def reopen_task(task_id: int, user_id: int) -> dict:
    return transition_task(task_id, TaskAction.REOPEN, user_id)


# ── Progress log ─────────────────────────────────────────────────────────────

def log_progress(task_id: int, user_id: int, status, note: str | None = None) -> dict:
    """Write a manual status entry.

    A status equal to the current one only appends a log entry. A different
    status must be reachable through the transition table and is executed
    as that transition; the note is logged alongside it.
    """
    try:
        target = TaskState(status)
    except ValueError:
        raise ValidationError(f"Invalid task status: {status}") from None

    task = get_live_task(task_id)
    if target.value != task.task_status:
        action = action_between(task.task_status, target)
        if action is None:
            raise TransitionError(
                f"Cannot move task from {task.task_status} to {target.value}",
                current=task.task_status,
            )
        if action == TaskAction.REJECT:
            return reject_and_reopen(task_id, user_id, note)
        return transition_task(task_id, action, user_id, note=note,
                               comments=None if is_blank(note) else note.strip())

    actor = get_active_user(user_id)
    if not (actor.is_privileged or is_assigned(task.id, actor.id)):
        raise PermissionDenied("User is not assigned to this task", user_id=user_id, code=E.NOT_ASSIGNEE)
    entry = _add_progress_log(task, actor.id, None if is_blank(note) else note.strip())
    commit_or_raise()
    return {
        "success": True,
        "message": "Progress logged",
        "task_id": task.id,
        "previous_status": task.task_status,
        "new_status": task.task_status,
        "log": entry.to_dict(),
    }


def list_progress_logs(task_id: int) -> list[TaskProgressLog]:
    """Progress log for a task, newest first."""
    get_live_task(task_id)
    return (
        TaskProgressLog.query.filter_by(task_id=task_id)
        .order_by(TaskProgressLog.created_at.desc(), TaskProgressLog.id.desc())
        .all()
    )
