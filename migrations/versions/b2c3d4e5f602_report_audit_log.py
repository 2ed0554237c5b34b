"""report_audit_log

One row per report generation attempt: requester, type, filters, source,
status and duration.

Revision ID: b2c3d4e5f602
Revises: a1b2c3d4e501
Create Date: 2026-10-17 15:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "b2c3d4e5f602"
down_revision = "a1b2c3d4e501"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    if "report_audit_log" in set(sa_inspect(bind).get_table_names()):
        return

    op.create_table(
        "report_audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("generated_by", sa.Integer(), nullable=True),
        sa.Column("report_type", sa.String(length=40), nullable=False),
        sa.Column("report_params", sa.JSON(), nullable=True),
        sa.Column("source", sa.String(length=10), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="success"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("generation_duration_ms", sa.Integer(), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["generated_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_report_audit_log_generated_by", "report_audit_log", ["generated_by"])
    op.create_index("ix_report_audit_log_report_type", "report_audit_log", ["report_type"])
    op.create_index("ix_report_audit_log_status", "report_audit_log", ["status"])
    op.create_index("ix_report_audit_log_generated_at", "report_audit_log", ["generated_at"])


def downgrade():
    op.drop_table("report_audit_log")
