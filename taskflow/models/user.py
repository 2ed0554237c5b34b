"""
Taskflow
User domain model.

Roles:
    - super_admin: approves reviews and edit requests, edits directly, deletes
    - admin:       creates and assigns tasks, requests edits
    - user:        works on assigned tasks and requests review
"""

from datetime import datetime, timezone

from taskflow.models import db
from taskflow.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_USER = "user"

USER_ROLES = {ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_USER}
PRIVILEGED_ROLES = {ROLE_SUPER_ADMIN, ROLE_ADMIN}


class User(SoftDeleteMixin, db.Model):
    """Application user. Email is unique among non-deleted users only."""

    __tablename__ = "users"
    __table_args__ = (
        db.Index(
            "uq_users_email_active",
            "email",
            unique=True,
            postgresql_where=db.text("deleted_at IS NULL"),
            sqlite_where=db.text("deleted_at IS NULL"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    full_name = db.Column(db.String(200), nullable=False, default="")
    role = db.Column(db.String(30), nullable=False, default=ROLE_USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    avatar_path = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_super_admin(self):
        return self.role == ROLE_SUPER_ADMIN

    @property
    def is_privileged(self):
        return self.role in PRIVILEGED_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "avatar_path": self.avatar_path,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
