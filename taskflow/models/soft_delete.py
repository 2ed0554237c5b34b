"""
Soft Delete Mixin

Adds ``deleted_at`` / ``deleted_by`` columns and query helpers for soft
delete. Rows are hidden by stamping ``deleted_at`` and brought back by
``restore()``; nothing is physically removed.

Usage:
    class Task(SoftDeleteMixin, db.Model):
        ...

    task.soft_delete(deleted_by=user.id)
    Task.query_active().all()
    task.restore()
"""

from datetime import datetime, timezone

from taskflow.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)
    deleted_by = db.Column(db.Integer, nullable=True)

    def soft_delete(self, deleted_by=None):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)
        self.deleted_by = deleted_by

    def restore(self):
        """Restore a soft-deleted record."""
        self.deleted_at = None
        self.deleted_by = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def query_deleted(cls):
        """Return only soft-deleted records."""
        return cls.query.filter(cls.deleted_at.isnot(None))
