"""
Report Service — task report data for super admins.

The ``generate-report`` serverless function is tried first. When it cannot
be reached the same report is computed locally from the database and cached
for ``REPORT_TTL`` seconds; the result then carries a warning and
``source: "local"``.

Report types:
    user_performance  — tasks of one assignee
    task_lifecycle    — status / priority distribution and review flow
    project           — one project's tasks
    company_wide      — every live task

Rendering (PDF etc.) is the client's concern; this service returns data.

Every generation attempt, remote or local, successful or not, is recorded
in ``report_audit_log`` with its parameters and duration.

Usage:
    from taskflow.services.report_service import generate_task_report
    result = generate_task_report("project", requested_by=1, project_id=4)
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy import func

from taskflow.core.exceptions import NotFoundError, PermissionDenied, TransportError, ValidationError
from taskflow.models import db
from taskflow.models.project import Project
from taskflow.models.report_audit import ReportAuditLog, write_report_audit
from taskflow.models.task import TASK_PRIORITIES, Task, TaskAssignee, TaskState
from taskflow.services.user_service import get_active_user, get_user
from taskflow.utils.errors import E
from taskflow.utils.helpers import commit_or_raise, parse_date_input

logger = logging.getLogger(__name__)

REPORT_TYPES = ("user_performance", "task_lifecycle", "project", "company_wide")
REPORT_TTL = 600   # 10 minutes

_TITLES = {
    "user_performance": "User Performance Report",
    "task_lifecycle": "Task Lifecycle Report",
    "project": "Project Report",
    "company_wide": "Company-wide Report",
}


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def _safe_pct(numerator: int, denominator: int) -> float:
    """Zero-safe percentage."""
    return round((numerator / denominator) * 100, 1) if denominator else 0.0


def _cache_key(params: dict) -> str:
    parts = [params["report_type"]] + [f"{k}={params[k]}" for k in sorted(params) if k != "report_type"]
    return "report:" + ":".join(parts)


def _validate_params(report_type, user_id, project_id, date_from, date_to) -> dict:
    if report_type not in REPORT_TYPES:
        raise ValidationError(
            f"Unknown report type '{report_type}'. Valid: {', '.join(REPORT_TYPES)}",
            code=E.VALIDATION_INVALID,
        )
    if report_type == "user_performance" and user_id is None:
        raise ValidationError("user_id is required for user_performance reports", code=E.VALIDATION_REQUIRED)
    if report_type == "project" and project_id is None:
        raise ValidationError("project_id is required for project reports", code=E.VALIDATION_REQUIRED)
    try:
        start = parse_date_input(date_from) if date_from else None
        end = parse_date_input(date_to) if date_to else None
    except ValueError as exc:
        raise ValidationError(str(exc), code=E.VALIDATION_INVALID) from exc
    if start and end and start > end:
        raise ValidationError("date_from must not be after date_to", code=E.VALIDATION_INVALID)

    params = {"report_type": report_type}
    if user_id is not None:
        params["user_id"] = int(user_id)
    if project_id is not None:
        params["project_id"] = int(project_id)
    if start:
        params["date_from"] = start.isoformat()
    if end:
        params["date_to"] = end.isoformat()
    return params


def _scoped_tasks(params: dict):
    q = Task.query_active()
    if "project_id" in params:
        q = q.filter(Task.project_id == params["project_id"])
    if "user_id" in params:
        q = q.join(TaskAssignee, TaskAssignee.task_id == Task.id).filter(TaskAssignee.user_id == params["user_id"])
    if "date_from" in params:
        q = q.filter(func.date(Task.created_at) >= params["date_from"])
    if "date_to" in params:
        q = q.filter(func.date(Task.created_at) <= params["date_to"])
    return q


# ═════════════════════════════════════════════════════════════════════════════
# Local computation
# ═════════════════════════════════════════════════════════════════════════════

def compute_summary(params: dict) -> dict:
    """Status, priority, overdue and review figures for the scoped tasks."""
    tasks = _scoped_tasks(params).all()
    today = date.today()
    total = len(tasks)

    by_status = {s.value: 0 for s in TaskState}
    by_priority = {p: 0 for p in TASK_PRIORITIES}
    overdue = 0
    reviewed = 0
    rejected = 0
    for t in tasks:
        by_status[t.task_status] = by_status.get(t.task_status, 0) + 1
        by_priority[t.priority] = by_priority.get(t.priority, 0) + 1
        if t.due_date and t.due_date < today and t.task_status != TaskState.CLOSED.value:
            overdue += 1
        if t.reviewed_at is not None:
            reviewed += 1
        if t.review_status == "changes_requested":
            rejected += 1

    closed = by_status[TaskState.CLOSED.value]
    return {
        "total_tasks": total,
        "by_status": by_status,
        "by_priority": by_priority,
        "overdue": overdue,
        "completion_pct": _safe_pct(closed, total),
        "reviewed": reviewed,
        "changes_requested": rejected,
    }


def build_local_report(params: dict) -> dict:
    """Full report payload computed from the database."""
    report = {
        "title": _TITLES[params["report_type"]],
        "report_type": params["report_type"],
        "filters": {k: v for k, v in params.items() if k != "report_type"},
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "summary": compute_summary(params),
    }
    if "project_id" in params:
        project = db.session.get(Project, params["project_id"])
        report["project"] = {"id": project.id, "name": project.name, "status": project.status} if project else None
    if "user_id" in params:
        user = get_user(params["user_id"])
        report["user"] = {"id": user.id, "full_name": user.full_name, "email": user.email} if user else None
    if params["report_type"] == "company_wide":
        rows = (
            db.session.query(Project.id, Project.name, func.count(Task.id))
            .outerjoin(Task, (Task.project_id == Project.id) & Task.deleted_at.is_(None))
            .filter(Project.deleted_at.is_(None))
            .group_by(Project.id, Project.name)
            .order_by(Project.name)
            .all()
        )
        report["projects"] = [{"id": pid, "name": name, "task_count": count} for pid, name, count in rows]
    return report


def _record_generation(user_id, params, source, started, error=None) -> None:
    write_report_audit(
        generated_by=user_id,
        report_type=params["report_type"],
        params=params,
        source=source,
        status="failed" if error else "success",
        duration_ms=int((time.monotonic() - started) * 1000),
        error_message=error,
    )
    commit_or_raise()


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def generate_task_report(report_type, *, requested_by, user_id=None, project_id=None,
                         date_from=None, date_to=None) -> dict:
    """Produce report data, remotely if possible, locally otherwise.

    Returns:
        {"success", "message", "report", "source", "warnings"}

    Raises:
        PermissionDenied: requester is not a super admin.
        ValidationError: bad report type or parameters.
        NotFoundError: referenced user or project does not exist.
    """
    actor = get_active_user(requested_by)
    if not actor.is_super_admin:
        raise PermissionDenied("Only super admins can generate reports", user_id=requested_by)
    params = _validate_params(report_type, user_id, project_id, date_from, date_to)
    if "user_id" in params and get_user(params["user_id"]) is None:
        raise NotFoundError("User", params["user_id"])
    if "project_id" in params:
        project = db.session.get(Project, params["project_id"])
        if project is None or project.is_deleted:
            raise NotFoundError("Project", params["project_id"])

    started = time.monotonic()
    gateway = current_app.extensions["functions_gateway"]
    try:
        result = gateway.invoke("generate-report", params)
        report = result.data.get("report", result.data)
        logger.info("Report generated remotely type=%s by=%s", report_type, requested_by)
        _record_generation(actor.id, params, "remote", started)
        return {"success": True, "message": "Report generated", "report": report,
                "source": "remote", "warnings": []}
    except TransportError as exc:
        logger.warning("Report function unavailable (%s), computing locally type=%s",
                       exc.details.get("reason"), report_type)
        warning = f"Report service unavailable ({exc.message}); report computed locally"

    cache = current_app.extensions["query_cache"]
    try:
        report = cache.get(_cache_key(params), loader=lambda: build_local_report(params), ttl=REPORT_TTL)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Local report failed type=%s by=%s", report_type, requested_by)
        _record_generation(actor.id, params, "local", started, error=str(exc))
        raise
    _record_generation(actor.id, params, "local", started)
    return {"success": True, "message": "Report generated", "report": report,
            "source": "local", "warnings": [warning]}


def list_report_audit(*, requested_by, generated_by=None, limit=100) -> list[ReportAuditLog]:
    """Most recent report generations (super admin only)."""
    actor = get_active_user(requested_by)
    if not actor.is_super_admin:
        raise PermissionDenied("Only super admins can view the report audit log", user_id=requested_by)
    q = ReportAuditLog.query
    if generated_by is not None:
        q = q.filter(ReportAuditLog.generated_by == generated_by)
    return q.order_by(ReportAuditLog.generated_at.desc(), ReportAuditLog.id.desc()).limit(limit).all()


def invalidate_reports() -> int:
    """Drop cached local reports."""
    return current_app.extensions["query_cache"].invalidate_prefix("report:")
