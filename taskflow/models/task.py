"""
Taskflow
Task domain models.

Models:
    - Task:            the unit of work, with lifecycle + review sub-state
    - TaskAssignee:    many-to-many task <-> user, unique per pair
    - TaskEditRequest: proposed field changes awaiting super-admin review
    - TaskProgressLog: append-only audit trail of lifecycle transitions
    - TaskFile:        metadata for attachments held in object storage

Lifecycle:
    ToDo → Work-In-Progress → Done → Closed
    Done → Work-In-Progress (review rejected)
    Closed → Work-In-Progress (reopened by super admin)
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import event as _sa_event

from taskflow.models import db
from taskflow.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────────

class TaskState(str, Enum):
    """Canonical lifecycle status stored in ``tasks.task_status``."""
    TODO = "ToDo"
    WORK_IN_PROGRESS = "Work-In-Progress"
    DONE = "Done"
    CLOSED = "Closed"


# Legacy free-text ``status`` column kept in step with ``task_status``
LEGACY_STATUS = {
    TaskState.TODO.value: "to_do",
    TaskState.WORK_IN_PROGRESS.value: "in_progress",
    TaskState.DONE.value: "done",
    TaskState.CLOSED.value: "closed",
}

TASK_PRIORITIES = ("low", "medium", "high", "urgent")
REVIEW_STATUSES = {"none", "pending_review", "under_review", "reviewed_approved", "changes_requested"}
CLOSED_REASONS = {"manual", "project_closed"}
EDIT_REQUEST_STATUSES = {"pending", "approved", "rejected"}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Task(SoftDeleteMixin, db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    due_date = db.Column(db.Date, nullable=True)

    task_status = db.Column(
        db.String(30), nullable=False, default=TaskState.TODO.value, index=True,
        comment="ToDo | Work-In-Progress | Done | Closed",
    )
    status = db.Column(db.String(30), nullable=False, default="to_do", comment="Legacy status mirror")

    # Review sub-state
    review_status = db.Column(db.String(30), nullable=False, default="none")
    review_requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_comments = db.Column(db.Text, nullable=True)

    # Archive / closure
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    closed_reason = db.Column(db.String(30), nullable=True, comment="manual | project_closed")
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status_before_closure = db.Column(db.String(30), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    project = db.relationship("Project", back_populates="tasks")
    assignees = db.relationship("TaskAssignee", backref="task", lazy="dynamic", passive_deletes=True)

    @property
    def state(self) -> TaskState:
        return TaskState(self.task_status)

    def assignee_ids(self) -> list[int]:
        return sorted(a.user_id for a in self.assignees)

    def to_dict(self, include_assignees=True):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "task_status": self.task_status,
            "status": self.status,
            "review_status": self.review_status,
            "review_requested_by": self.review_requested_by,
            "review_requested_at": _iso(self.review_requested_at),
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "review_comments": self.review_comments,
            "archived_at": _iso(self.archived_at),
            "archived_by": self.archived_by,
            "closed_reason": self.closed_reason,
            "closed_at": _iso(self.closed_at),
            "created_by": self.created_by,
            "deleted_at": _iso(self.deleted_at),
            "deleted_by": self.deleted_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_assignees:
            d["assignee_ids"] = self.assignee_ids()
        return d

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.task_status}]>"


@_sa_event.listens_for(Task, "before_insert")
@_sa_event.listens_for(Task, "before_update")
def _sync_lifecycle_flags(mapper, connection, target) -> None:  # noqa: ANN001
    """Keep the legacy status, review and archive stamps consistent with ``task_status``.

    Done implies ``review_requested_at`` is set. Closed implies ``reviewed_at``
    and ``archived_at`` are set; any other state clears the archive stamp.
    """
    target.status = LEGACY_STATUS.get(target.task_status, target.status)
    if target.task_status == TaskState.DONE.value and target.review_requested_at is None:
        target.review_requested_at = _utcnow()
    if target.task_status == TaskState.CLOSED.value:
        if target.reviewed_at is None:
            target.reviewed_at = _utcnow()
        if target.archived_at is None:
            target.archived_at = _utcnow()
    elif target.archived_at is not None:
        target.archived_at = None
        target.archived_by = None


class TaskAssignee(db.Model):
    __tablename__ = "task_assignees"
    __table_args__ = (
        db.UniqueConstraint("task_id", "user_id", name="uq_task_assignees_task_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "assigned_by": self.assigned_by,
            "assigned_at": _iso(self.assigned_at),
        }


class TaskEditRequest(db.Model):
    """
    Proposed change-set for a task.

    ``proposed_changes`` only carries the fields being changed
    (title, description, due_date, priority, assignee_ids).
    At most one ``pending`` row per task, enforced by a partial unique index.
    """

    __tablename__ = "task_edit_requests"
    __table_args__ = (
        db.Index(
            "uq_task_edit_requests_one_pending",
            "task_id",
            unique=True,
            postgresql_where=db.text("status = 'pending'"),
            sqlite_where=db.text("status = 'pending'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    proposed_changes = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    comments = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    task = db.relationship("Task")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "requested_by": self.requested_by,
            "proposed_changes": self.proposed_changes or {},
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "comments": self.comments,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<TaskEditRequest {self.id}: task={self.task_id} [{self.status}]>"


class TaskProgressLog(db.Model):
    """Append-only. Rows are never updated or deleted once flushed."""

    __tablename__ = "task_progress_log"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(30), nullable=False)
    progress_note = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "status": self.status,
            "progress_note": self.progress_note,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


@_sa_event.listens_for(TaskProgressLog, "before_update")
@_sa_event.listens_for(TaskProgressLog, "before_delete")
def _block_progress_log_mutation(mapper, connection, target) -> None:  # noqa: ANN001
    raise RuntimeError(
        f"task_progress_log is append-only (row id={target.id}); write a new entry instead."
    )


class TaskFile(db.Model):
    __tablename__ = "task_files"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    file_name = db.Column(db.String(300), nullable=False)
    storage_path = db.Column(db.String(500), nullable=False, unique=True)
    mime_type = db.Column(db.String(120), nullable=True)
    size_bytes = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "uploaded_by": self.uploaded_by,
            "file_name": self.file_name,
            "storage_path": self.storage_path,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "created_at": _iso(self.created_at),
        }
