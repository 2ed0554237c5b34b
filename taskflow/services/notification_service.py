"""
Taskflow
Notification Service.

Central service for creating and querying in-app notifications, plus the
lifecycle helpers used by task, edit-request and project services.

The lifecycle helpers are fire-and-forget: they run after the primary
operation has committed, and a failure is logged, never raised.
"""

import logging

from sqlalchemy import select

from taskflow.models import db
from taskflow.models.notification import NOTIFICATION_TYPES, Notification
from taskflow.models.task import TaskAssignee
from taskflow.models.user import PRIVILEGED_ROLES, ROLE_SUPER_ADMIN, User

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(*, recipient_user_id, type, title, message="",
               related_entity_type="", related_entity_id=None, commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")
        notif = Notification(
            recipient_user_id=recipient_user_id,
            type=type,
            title=title,
            message=message,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    @staticmethod
    def notify_many(recipient_user_ids, *, type, title, message="",
                    related_entity_type="", related_entity_id=None, commit=True):
        """
        Send the same notification to several users (duplicates collapsed).

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for uid in dict.fromkeys(recipient_user_ids):
            notifications.append(NotificationService.notify(
                recipient_user_id=uid,
                type=type,
                title=title,
                message=message,
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
                commit=False,
            ))
        if commit and notifications:
            db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, *, is_read=None, type=None, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(recipient_user_id=user_id)
        if is_read is not None:
            q = q.filter_by(is_read=is_read)
        if type:
            q = q.filter_by(type=type)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read."""
        unread = Notification.query.filter_by(recipient_user_id=user_id, is_read=False).all()
        for notif in unread:
            notif.mark_read()
        db.session.commit()
        return len(unread)

    # ── Lifecycle helpers ─────────────────────────────────────────────────

    @staticmethod
    def _best_effort(label, fn):
        try:
            return fn()
        except Exception:
            db.session.rollback()
            logger.warning("Notification '%s' failed, main flow unaffected", label, exc_info=True)
            return []

    @staticmethod
    def reviewer_ids(exclude_user_id=None, roles=PRIVILEGED_ROLES):
        """Active users holding one of ``roles``, optionally excluding one user."""
        stmt = select(User.id).where(
            User.role.in_(roles),
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        return list(db.session.execute(stmt).scalars())

    @staticmethod
    def assignee_ids(task_id, exclude_user_id=None):
        """Active assignees of a task, optionally excluding one user."""
        stmt = (
            select(TaskAssignee.user_id)
            .join(User, User.id == TaskAssignee.user_id)
            .where(
                TaskAssignee.task_id == task_id,
                User.is_active.is_(True),
                User.deleted_at.is_(None),
            )
        )
        if exclude_user_id is not None:
            stmt = stmt.where(TaskAssignee.user_id != exclude_user_id)
        return list(db.session.execute(stmt).scalars())

    @staticmethod
    def notify_task_assigned(task, user_ids):
        return NotificationService._best_effort("task_assigned", lambda: NotificationService.notify_many(
            user_ids,
            type="task_assigned",
            title="New Task Assigned",
            message=f'You have been assigned to task "{task.title}"',
            related_entity_type="task",
            related_entity_id=task.id,
        ))

    @staticmethod
    def notify_review_requested(task, requested_by):
        return NotificationService._best_effort("review_requested", lambda: NotificationService.notify_many(
            NotificationService.reviewer_ids(exclude_user_id=requested_by),
            type="review_requested",
            title="Task Review Requested",
            message=f'Task "{task.title}" is waiting for review',
            related_entity_type="task",
            related_entity_id=task.id,
        ))

    @staticmethod
    def notify_review_completed(task, reviewer_id, *, approved):
        if approved:
            title, message = "Task Approved", f'Task "{task.title}" has been approved and closed'
        else:
            title, message = "Changes Requested", f'Task "{task.title}" needs changes: {task.review_comments}'
        return NotificationService._best_effort("review_completed", lambda: NotificationService.notify_many(
            NotificationService.assignee_ids(task.id, exclude_user_id=reviewer_id),
            type="review_completed",
            title=title,
            message=message,
            related_entity_type="task",
            related_entity_id=task.id,
        ))

    @staticmethod
    def notify_edit_request_created(edit_request, task):
        return NotificationService._best_effort("edit_request_created", lambda: NotificationService.notify_many(
            NotificationService.reviewer_ids(
                exclude_user_id=edit_request.requested_by, roles={ROLE_SUPER_ADMIN},
            ),
            type="edit_request_created",
            title="Edit Request Submitted",
            message=f'An edit to task "{task.title}" is awaiting approval',
            related_entity_type="edit_request",
            related_entity_id=edit_request.id,
        ))

    @staticmethod
    def notify_edit_request_resolved(edit_request, task):
        if edit_request.requested_by is None or edit_request.requested_by == edit_request.reviewed_by:
            return []
        verdict = "approved" if edit_request.status == "approved" else "rejected"
        return NotificationService._best_effort("edit_request_resolved", lambda: NotificationService.notify_many(
            [edit_request.requested_by],
            type="edit_request_resolved",
            title=f"Edit Request {verdict.capitalize()}",
            message=f'Your edit request for task "{task.title}" was {verdict}',
            related_entity_type="edit_request",
            related_entity_id=edit_request.id,
        ))

    @staticmethod
    def notify_project_status(project, task_ids, *, closed, actor_id):
        recipients = []
        for task_id in task_ids:
            recipients.extend(NotificationService.assignee_ids(task_id, exclude_user_id=actor_id))
        verb = "closed" if closed else "reopened"
        return NotificationService._best_effort(f"project_{verb}", lambda: NotificationService.notify_many(
            recipients,
            type=f"project_{verb}",
            title=f"Project {verb.capitalize()}",
            message=f'Project "{project.name}" was {verb}',
            related_entity_type="project",
            related_entity_id=project.id,
        ))

    @staticmethod
    def notify_document_uploaded(task, task_file):
        return NotificationService._best_effort("document_uploaded", lambda: NotificationService.notify_many(
            NotificationService.assignee_ids(task.id, exclude_user_id=task_file.uploaded_by),
            type="document_uploaded",
            title="Document Uploaded",
            message=f'"{task_file.file_name}" was attached to task "{task.title}"',
            related_entity_type="task",
            related_entity_id=task.id,
        ))
