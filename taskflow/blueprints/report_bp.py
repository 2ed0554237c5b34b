"""
Taskflow
Report Blueprint.

Endpoints:
    POST /api/v1/reports    {"report_type", "user_id"?, "project_id"?, "date_from"?, "date_to"?}
    GET  /api/v1/reports/audit    generation history (super admin; generated_by?, limit?)
"""

import logging

from flask import Blueprint, jsonify, request

from taskflow.blueprints import current_user_id, json_body, pagination_args
from taskflow.core.exceptions import ValidationError
from taskflow.services.report_service import generate_task_report, list_report_audit
from taskflow.utils.errors import E

logger = logging.getLogger(__name__)

report_bp = Blueprint("report", __name__, url_prefix="/api/v1")


@report_bp.route("/reports", methods=["POST"])
def generate_report():
    data = json_body()
    report_type = data.get("report_type")
    if not report_type:
        raise ValidationError("report_type is required", code=E.VALIDATION_REQUIRED)
    result = generate_task_report(
        report_type,
        requested_by=current_user_id(),
        user_id=data.get("user_id"),
        project_id=data.get("project_id"),
        date_from=data.get("date_from"),
        date_to=data.get("date_to"),
    )
    return jsonify(result)


@report_bp.route("/reports/audit", methods=["GET"])
def report_audit():
    limit, _ = pagination_args(default_limit=100)
    entries = list_report_audit(
        requested_by=current_user_id(),
        generated_by=request.args.get("generated_by", type=int),
        limit=limit,
    )
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})
