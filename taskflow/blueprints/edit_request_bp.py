"""
Taskflow
Edit Request Blueprint.

Endpoints (all under /api/v1):
    POST /tasks/<id>/edit-requests          propose changes {"changes": {...}}
    GET  /tasks/<id>/edit-requests          requests for a task
    GET  /tasks/<id>/edit-history           requests with requester / reviewer names
    POST /tasks/<id>/direct-edit            super admin edits immediately
    GET  /edit-requests/pending             pending requests on live tasks (super admin)
    POST /edit-requests/<id>/approve        apply and approve
    POST /edit-requests/<id>/reject         reject (comments required)
"""

import logging

from flask import Blueprint, jsonify

from taskflow.blueprints import current_user_id, json_body, require_role
from taskflow.models.user import ROLE_SUPER_ADMIN
from taskflow.services import edit_request_service
from taskflow.services.direct_edit import direct_edit

logger = logging.getLogger(__name__)

edit_request_bp = Blueprint("edit_request", __name__, url_prefix="/api/v1")


@edit_request_bp.route("/tasks/<int:task_id>/edit-requests", methods=["POST"])
def create_edit_request(task_id):
    data = json_body()
    req = edit_request_service.create(task_id, current_user_id(), data.get("changes"))
    return jsonify({"success": True, "message": "Edit request submitted", "request": req.to_dict()}), 201


@edit_request_bp.route("/tasks/<int:task_id>/edit-requests", methods=["GET"])
def list_task_edit_requests(task_id):
    return jsonify({"items": [r.to_dict() for r in edit_request_service.list_for_task(task_id)]})


@edit_request_bp.route("/tasks/<int:task_id>/edit-history", methods=["GET"])
def edit_history(task_id):
    return jsonify({"items": edit_request_service.history(task_id)})


@edit_request_bp.route("/tasks/<int:task_id>/direct-edit", methods=["POST"])
def direct_edit_task(task_id):
    data = json_body()
    return jsonify(direct_edit(task_id, current_user_id(), data.get("changes"), data.get("comments")))


@edit_request_bp.route("/edit-requests/pending", methods=["GET"])
def list_pending():
    require_role(ROLE_SUPER_ADMIN)
    items = edit_request_service.list_pending()
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@edit_request_bp.route("/edit-requests/<int:request_id>/approve", methods=["POST"])
def approve_edit_request(request_id):
    data = json_body()
    return jsonify(edit_request_service.approve(request_id, current_user_id(), data.get("comments")))


@edit_request_bp.route("/edit-requests/<int:request_id>/reject", methods=["POST"])
def reject_edit_request(request_id):
    data = json_body()
    return jsonify(edit_request_service.reject(request_id, current_user_id(), data.get("comments")))
