"""
Taskflow
User Blueprint.

Endpoints (all under /api/v1):
    GET  /users                          list (?role=..., ?include_inactive=true)
    POST /users                          create account (admin)
    GET  /users/<id>                     detail
    PUT  /users/<id>/role                change role (super admin)
    POST /users/<id>/reset-password      reset password (admin)
    POST /users/<id>/avatar              multipart upload (field "file")
"""

import logging

from flask import Blueprint, jsonify, request

from taskflow.blueprints import current_user_id, json_body
from taskflow.core.exceptions import NotFoundError, ValidationError
from taskflow.services import storage_service, user_service
from taskflow.utils.errors import E

logger = logging.getLogger(__name__)

user_bp = Blueprint("user", __name__, url_prefix="/api/v1")


@user_bp.route("/users", methods=["GET"])
def list_users():
    users = user_service.list_users(
        role=request.args.get("role"),
        include_inactive=request.args.get("include_inactive", "false").lower() == "true",
    )
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)})


@user_bp.route("/users", methods=["POST"])
def create_user():
    data = json_body()
    result = user_service.create_user(
        email=data.get("email"),
        full_name=data.get("full_name", ""),
        role=data.get("role", "user"),
        created_by=current_user_id(),
    )
    return jsonify(result), 201


@user_bp.route("/users/<int:user_id>", methods=["GET"])
def get_user(user_id):
    user = user_service.get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return jsonify(user.to_dict())


@user_bp.route("/users/<int:user_id>/role", methods=["PUT"])
def update_role(user_id):
    data = json_body()
    if not data.get("role"):
        raise ValidationError("role is required", code=E.VALIDATION_REQUIRED)
    user = user_service.update_role(user_id, data["role"], updated_by=current_user_id())
    return jsonify({"success": True, "message": "Role updated", "user": user.to_dict()})


@user_bp.route("/users/<int:user_id>/reset-password", methods=["POST"])
def reset_password(user_id):
    return jsonify(user_service.reset_password(user_id, requested_by=current_user_id()))


@user_bp.route("/users/<int:user_id>/avatar", methods=["POST"])
def upload_avatar(user_id):
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("file is required", code=E.VALIDATION_REQUIRED)
    result = storage_service.upload_avatar(
        user_id, upload.filename, upload.mimetype, upload.stream, uploaded_by=current_user_id(),
    )
    return jsonify(result), 201
