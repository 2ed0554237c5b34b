"""
Taskflow
Report audit domain model.

Models:
    - ReportAuditLog: append-only record of every report generation attempt.
"""

from datetime import datetime, timezone

from taskflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

REPORT_AUDIT_STATUSES = {"success", "failed"}
REPORT_SOURCES = {"remote", "local"}


class ReportAuditLog(db.Model):
    """
    Who generated which report, with what filters, and how it went.

    One row per attempt. ``source`` tells whether the serverless function
    or the local fallback produced the data.
    """

    __tablename__ = "report_audit_log"
    __table_args__ = (
        db.Index("ix_report_audit_log_generated_at", "generated_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    generated_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    report_type = db.Column(db.String(40), nullable=False, index=True)
    report_params = db.Column(db.JSON, nullable=True)
    source = db.Column(db.String(10), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="success", index=True)
    error_message = db.Column(db.Text, nullable=True)
    generation_duration_ms = db.Column(db.Integer, nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "generated_by": self.generated_by,
            "report_type": self.report_type,
            "report_params": self.report_params or {},
            "source": self.source,
            "status": self.status,
            "error_message": self.error_message,
            "generation_duration_ms": self.generation_duration_ms,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }

    def __repr__(self):
        return f"<ReportAuditLog {self.id}: {self.report_type} {self.status}>"


def write_report_audit(
    *,
    generated_by: int | None,
    report_type: str,
    params: dict | None = None,
    source: str | None = None,
    status: str = "success",
    duration_ms: int | None = None,
    error_message: str | None = None,
) -> ReportAuditLog:
    """
    Append a single report audit row.  Uses ``flush`` so callers keep
    transaction control.
    """
    if status not in REPORT_AUDIT_STATUSES:
        raise ValueError(f"Invalid report audit status: {status}")
    if source is not None and source not in REPORT_SOURCES:
        raise ValueError(f"Invalid report source: {source}")

    entry = ReportAuditLog(
        generated_by=generated_by,
        report_type=report_type,
        report_params={k: v for k, v in (params or {}).items() if k != "report_type"},
        source=source,
        status=status,
        generation_duration_ms=duration_ms,
        error_message=error_message,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
