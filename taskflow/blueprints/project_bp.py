"""
Taskflow
Project Blueprint.

Endpoints (all under /api/v1):
    GET  /projects                 list (?status=active|closed)
    POST /projects                 create
    GET  /projects/<id>            detail
    POST /projects/<id>/close      close project and its open tasks
    POST /projects/<id>/reopen     reopen project, restore tasks it closed
"""

import logging

from flask import Blueprint, jsonify, request

from taskflow.blueprints import current_user_id, json_body
from taskflow.services import project_service

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    projects = project_service.list_projects(status=request.args.get("status"))
    return jsonify({"items": [p.to_dict() for p in projects], "total": len(projects)})


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = json_body()
    project = project_service.create_project(
        name=data.get("name"),
        created_by=current_user_id(),
        description=data.get("description", ""),
    )
    return jsonify({"success": True, "message": "Project created", "project": project.to_dict()}), 201


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(project_service.get_project(project_id).to_dict())


@project_bp.route("/projects/<int:project_id>/close", methods=["POST"])
def close_project(project_id):
    return jsonify(project_service.close_project(project_id, current_user_id()))


@project_bp.route("/projects/<int:project_id>/reopen", methods=["POST"])
def reopen_project(project_id):
    return jsonify(project_service.reopen_project(project_id, current_user_id()))
