"""
Task lifecycle transition tests.

    1. Pure transition table (no database)
    2. Service transitions: state, stamps, progress log, notifications
    3. Rejections leave the task untouched
"""

import pytest

from taskflow.core.exceptions import NotFoundError, PermissionDenied, TransitionError, ValidationError
from taskflow.models import db
from taskflow.models.notification import Notification
from taskflow.models.task import Task, TaskProgressLog, TaskState
from taskflow.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_USER
from taskflow.services import task_lifecycle
from taskflow.services.task_lifecycle import TaskAction, action_between, available_actions, plan_transition
from taskflow.utils.errors import E


def _reload(task_id):
    db.session.expire_all()
    return db.session.get(Task, task_id)


def _logs(task_id):
    return TaskProgressLog.query.filter_by(task_id=task_id).order_by(TaskProgressLog.id).all()


# ═════════════════════════════════════════════════════════════════════════════
# 1. Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestPlanTransition:
    @pytest.mark.parametrize("state,action,role,assignee,expected", [
        (TaskState.TODO, TaskAction.START_WORK, ROLE_USER, True, TaskState.WORK_IN_PROGRESS),
        (TaskState.WORK_IN_PROGRESS, TaskAction.REQUEST_REVIEW, ROLE_USER, True, TaskState.DONE),
        (TaskState.DONE, TaskAction.APPROVE, ROLE_SUPER_ADMIN, False, TaskState.CLOSED),
        (TaskState.DONE, TaskAction.REJECT, ROLE_SUPER_ADMIN, False, TaskState.WORK_IN_PROGRESS),
        (TaskState.CLOSED, TaskAction.REOPEN, ROLE_SUPER_ADMIN, False, TaskState.WORK_IN_PROGRESS),
    ])
    def test_valid_edges(self, state, action, role, assignee, expected):
        plan = plan_transition(state, action, role, is_assignee=assignee)
        assert plan.new_state == expected
        assert plan.previous == state
        assert not plan.noop

    def test_state_values_accepted_as_strings(self):
        plan = plan_transition("ToDo", "start_work", ROLE_USER, is_assignee=True)
        assert plan.new_state is TaskState.WORK_IN_PROGRESS

    def test_unknown_action(self):
        with pytest.raises(TransitionError, match="Unknown action"):
            plan_transition(TaskState.TODO, "teleport", ROLE_USER, is_assignee=True)

    def test_non_assignee_cannot_start(self):
        with pytest.raises(PermissionDenied) as exc:
            plan_transition(TaskState.TODO, TaskAction.START_WORK, ROLE_SUPER_ADMIN, is_assignee=False)
        assert exc.value.code == E.NOT_ASSIGNEE
        assert exc.value.message == "User is not assigned to this task"

    def test_start_beyond_todo_is_noop(self):
        plan = plan_transition(TaskState.DONE, TaskAction.START_WORK, ROLE_USER, is_assignee=True)
        assert plan.noop
        assert plan.new_state == TaskState.DONE

    def test_request_review_on_closed(self):
        with pytest.raises(TransitionError) as exc:
            plan_transition(TaskState.CLOSED, TaskAction.REQUEST_REVIEW, ROLE_USER, is_assignee=True)
        assert exc.value.message == "Cannot modify Closed task"
        assert exc.value.code == E.TASK_CLOSED

    def test_request_review_from_todo(self):
        with pytest.raises(TransitionError, match="Work-In-Progress"):
            plan_transition(TaskState.TODO, TaskAction.REQUEST_REVIEW, ROLE_USER, is_assignee=True)

    @pytest.mark.parametrize("action", [TaskAction.APPROVE, TaskAction.REJECT, TaskAction.REOPEN])
    def test_admin_is_not_super_admin(self, action):
        with pytest.raises(PermissionDenied, match="Only Super Admin"):
            plan_transition(TaskState.DONE, action, ROLE_ADMIN, is_assignee=True)

    def test_approve_requires_done(self):
        with pytest.raises(TransitionError, match="Done state"):
            plan_transition(TaskState.WORK_IN_PROGRESS, TaskAction.APPROVE, ROLE_SUPER_ADMIN, is_assignee=False)

    def test_reopen_requires_closed(self):
        with pytest.raises(TransitionError, match="Only Closed tasks"):
            plan_transition(TaskState.DONE, TaskAction.REOPEN, ROLE_SUPER_ADMIN, is_assignee=False)

    def test_action_between(self):
        assert action_between("ToDo", "Work-In-Progress") == TaskAction.START_WORK
        assert action_between("Done", "Work-In-Progress") == TaskAction.REJECT
        assert action_between("ToDo", "Closed") is None


# ═════════════════════════════════════════════════════════════════════════════
# 2. Service transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestStartWork:
    def test_assignee_starts_work(self, make_task, worker):
        task = make_task(assignees=[worker])

        result = task_lifecycle.start_work(task.id, worker.id, note="Picked up")

        assert result["success"] is True
        assert result["previous_status"] == "ToDo"
        assert result["new_status"] == "Work-In-Progress"
        task = _reload(task.id)
        assert task.task_status == "Work-In-Progress"
        assert task.status == "in_progress"
        notes = [entry.progress_note for entry in _logs(task.id)]
        assert notes == ["Work started", "Picked up"]

    def test_non_assignee_rejected_without_mutation(self, make_task, worker, outsider):
        task = make_task(assignees=[worker])

        with pytest.raises(PermissionDenied) as exc:
            task_lifecycle.start_work(task.id, outsider.id)

        assert exc.value.code == E.NOT_ASSIGNEE
        assert _reload(task.id).task_status == "ToDo"
        assert _logs(task.id) == []

    def test_already_started_is_accepted_noop(self, make_task, worker):
        task = make_task(state=TaskState.DONE, assignees=[worker])

        result = task_lifecycle.start_work(task.id, worker.id)

        assert result["success"] is True
        assert result["message"] == task_lifecycle.ALREADY_STARTED_MESSAGE
        assert result["new_status"] == "Done"
        assert _logs(task.id) == []

    def test_deleted_task_not_found(self, make_task, worker, super_admin):
        task = make_task(assignees=[worker])
        task.soft_delete(deleted_by=super_admin.id)
        db.session.commit()

        with pytest.raises(NotFoundError, match="Task not found or deleted"):
            task_lifecycle.start_work(task.id, worker.id)


class TestRequestReview:
    def test_moves_to_done_and_notifies_reviewers(self, make_task, worker, super_admin, admin):
        task = make_task(state=TaskState.WORK_IN_PROGRESS, assignees=[worker])

        task_lifecycle.request_review(task.id, worker.id)

        task = _reload(task.id)
        assert task.task_status == "Done"
        assert task.review_status == "pending_review"
        assert task.review_requested_by == worker.id
        assert task.review_requested_at is not None
        recipients = {n.recipient_user_id for n in Notification.query.filter_by(type="review_requested")}
        assert recipients == {super_admin.id, admin.id}

    def test_mark_done_alias(self):
        assert task_lifecycle.mark_done is task_lifecycle.request_review

    def test_closed_task_cannot_be_modified(self, make_task, worker):
        task = make_task(state=TaskState.CLOSED, assignees=[worker])
        with pytest.raises(TransitionError, match="Cannot modify Closed task"):
            task_lifecycle.request_review(task.id, worker.id)


class TestReview:
    def test_approve_closes_and_archives(self, make_task, worker, super_admin):
        task = make_task(state=TaskState.DONE, assignees=[worker])

        result = task_lifecycle.approve_and_close(task.id, super_admin.id, comments="  Looks good ")

        assert result["new_status"] == "Closed"
        task = _reload(task.id)
        assert task.task_status == "Closed"
        assert task.archived_at is not None
        assert task.archived_by == super_admin.id
        assert task.reviewed_by == super_admin.id
        assert task.reviewed_at is not None
        assert task.review_comments == "Looks good"
        assert task.closed_reason == "manual"
        assert Notification.query.filter_by(recipient_user_id=worker.id, type="review_completed").count() == 1

    def test_reject_reopens_with_comments(self, make_task, worker, super_admin):
        task = make_task(state=TaskState.DONE, assignees=[worker])

        result = task_lifecycle.reject_and_reopen(task.id, super_admin.id, "Add the totals table")

        assert result["new_status"] == "Work-In-Progress"
        task = _reload(task.id)
        assert task.task_status == "Work-In-Progress"
        assert task.review_comments == "Add the totals table"
        assert task.review_status == "changes_requested"
        assert task.review_requested_at is None
        notif = Notification.query.filter_by(recipient_user_id=worker.id).one()
        assert notif.title == "Changes Requested"
        assert "Add the totals table" in notif.message

    @pytest.mark.parametrize("comments", [None, "", "   "])
    def test_reject_requires_comments_before_any_lookup(self, comments, super_admin):
        with pytest.raises(ValidationError) as exc:
            task_lifecycle.reject_and_reopen(999, super_admin.id, comments)
        assert exc.value.message == "Comments are required when rejecting review"
        assert exc.value.code == E.VALIDATION_REQUIRED

    def test_admin_cannot_approve(self, make_task, admin):
        task = make_task(state=TaskState.DONE)
        with pytest.raises(PermissionDenied, match="Only Super Admin can approve"):
            task_lifecycle.approve_and_close(task.id, admin.id)
        assert _reload(task.id).task_status == "Done"

    def test_reopen_clears_archive_and_review(self, make_task, super_admin):
        task = make_task(state=TaskState.CLOSED, closed_reason="manual")

        task_lifecycle.reopen_task(task.id, super_admin.id)

        task = _reload(task.id)
        assert task.task_status == "Work-In-Progress"
        assert task.archived_at is None
        assert task.reviewed_at is None
        assert task.closed_reason is None
        assert task.review_status == "none"


class TestFullCycle:
    def test_todo_to_closed(self, make_task, worker, super_admin):
        task = make_task(assignees=[worker])

        task_lifecycle.start_work(task.id, worker.id)
        task_lifecycle.request_review(task.id, worker.id)
        task_lifecycle.reject_and_reopen(task.id, super_admin.id, "Missing section 2")
        task_lifecycle.request_review(task.id, worker.id)
        task_lifecycle.approve_and_close(task.id, super_admin.id)

        assert _reload(task.id).task_status == "Closed"
        statuses = [entry.status for entry in _logs(task.id)]
        assert statuses == ["Work-In-Progress", "Done", "Work-In-Progress", "Done", "Closed"]


class TestAvailableActions:
    def test_assignee_on_todo(self, make_task, worker):
        task = make_task(assignees=[worker])
        assert available_actions(task, ROLE_USER, True) == ["start_work"]

    def test_super_admin_on_done(self, make_task):
        task = make_task(state=TaskState.DONE)
        assert available_actions(task, ROLE_SUPER_ADMIN, False) == ["approve", "reject"]

    def test_outsider_has_none(self, make_task):
        task = make_task(state=TaskState.WORK_IN_PROGRESS)
        assert available_actions(task, ROLE_USER, False) == []


# ═════════════════════════════════════════════════════════════════════════════
# 3. Progress log
# ═════════════════════════════════════════════════════════════════════════════


class TestLogProgress:
    def test_same_status_appends_note(self, make_task, worker):
        task = make_task(state=TaskState.WORK_IN_PROGRESS, assignees=[worker])

        result = task_lifecycle.log_progress(task.id, worker.id, "Work-In-Progress", "Halfway there")

        assert result["log"]["progress_note"] == "Halfway there"
        assert _reload(task.id).task_status == "Work-In-Progress"

    def test_different_status_runs_transition(self, make_task, worker):
        task = make_task(assignees=[worker])

        result = task_lifecycle.log_progress(task.id, worker.id, "Work-In-Progress", "Starting now")

        assert result["new_status"] == "Work-In-Progress"
        assert [e.progress_note for e in _logs(task.id)] == ["Work started", "Starting now"]

    def test_unreachable_status(self, make_task, worker):
        task = make_task(assignees=[worker])
        with pytest.raises(TransitionError, match="Cannot move task"):
            task_lifecycle.log_progress(task.id, worker.id, "Closed")

    def test_invalid_status(self, make_task, worker):
        task = make_task(assignees=[worker])
        with pytest.raises(ValidationError, match="Invalid task status"):
            task_lifecycle.log_progress(task.id, worker.id, "Paused")

    def test_outsider_cannot_log(self, make_task, outsider):
        task = make_task(state=TaskState.WORK_IN_PROGRESS)
        with pytest.raises(PermissionDenied):
            task_lifecycle.log_progress(task.id, outsider.id, "Work-In-Progress", "hi")

    def test_progress_log_is_append_only(self, make_task, worker):
        task = make_task(assignees=[worker])
        task_lifecycle.start_work(task.id, worker.id)
        entry = _logs(task.id)[0]

        entry.progress_note = "rewritten"
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()
