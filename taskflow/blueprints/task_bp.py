"""
Taskflow
Task Blueprint.

Endpoints (all under /api/v1):
    GET    /tasks                              list (project_id, status, assignee_id, search, include_deleted)
    POST   /tasks                              create
    GET    /tasks/deleted                      soft-deleted tasks (super admin)
    GET    /tasks/<id>                         detail + available actions for the caller
    DELETE /tasks/<id>                         soft delete (super admin)
    POST   /tasks/<id>/restore                 restore (super admin)
    DELETE /tasks/<id>/permanent               hard delete a soft-deleted task (super admin)
    POST   /tasks/purge                        hard delete tasks soft-deleted before the cutoff

    POST   /tasks/<id>/start                   ToDo → Work-In-Progress
    POST   /tasks/<id>/request-review          Work-In-Progress → Done
    POST   /tasks/<id>/approve                 Done → Closed
    POST   /tasks/<id>/reject                  Done → Work-In-Progress (comments required)
    POST   /tasks/<id>/reopen                  Closed → Work-In-Progress

    GET    /tasks/<id>/assignees               assignees with user profile
    POST   /tasks/<id>/assignees               add {"user_ids": [...]}
    PUT    /tasks/<id>/assignees               replace the whole set
    DELETE /tasks/<id>/assignees/<user_id>     remove one

    GET    /tasks/<id>/progress                progress log
    POST   /tasks/<id>/progress                {"status", "note"}

    GET    /tasks/<id>/files                   attachments
    POST   /tasks/<id>/files                   multipart upload (field "file")
    DELETE /task-files/<file_id>               remove attachment

    GET    /users/<user_id>/tasks              tasks assigned to a user
"""

import logging

from flask import Blueprint, jsonify, request

from taskflow.blueprints import current_user_id, json_body, require_role
from taskflow.core.exceptions import ValidationError
from taskflow.models.user import ROLE_SUPER_ADMIN
from taskflow.services import assignment_service, storage_service, task_lifecycle, task_service
from taskflow.services.user_service import get_active_user
from taskflow.utils.errors import E

logger = logging.getLogger(__name__)

task_bp = Blueprint("task", __name__, url_prefix="/api/v1")


def _user_ids(data):
    ids = data.get("user_ids")
    if ids is None:
        raise ValidationError("user_ids is required", code=E.VALIDATION_REQUIRED)
    if not isinstance(ids, list):
        raise ValidationError("user_ids must be a list")
    try:
        return [int(uid) for uid in ids]
    except (TypeError, ValueError):
        raise ValidationError("user_ids must contain integers") from None


# ═══════════════════════════════════════════════════════════════════════════
#  TASK CRUD
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks", methods=["GET"])
def list_tasks():
    tasks = task_service.list_tasks(
        project_id=request.args.get("project_id", type=int),
        task_status=request.args.get("status"),
        assignee_id=request.args.get("assignee_id", type=int),
        include_deleted=request.args.get("include_deleted", "false").lower() == "true",
        search=request.args.get("search"),
    )
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})


@task_bp.route("/tasks", methods=["POST"])
def create_task():
    data = json_body()
    task = task_service.create_task(
        title=data.get("title"),
        created_by=current_user_id(),
        description=data.get("description", ""),
        priority=data.get("priority", "medium"),
        due_date=data.get("due_date"),
        project_id=data.get("project_id"),
        assignee_ids=data.get("assignee_ids") or [],
    )
    return jsonify({"success": True, "message": "Task created", "task": task.to_dict()}), 201


@task_bp.route("/tasks/deleted", methods=["GET"])
def list_deleted_tasks():
    require_role(ROLE_SUPER_ADMIN)
    tasks = task_service.list_deleted_tasks()
    return jsonify({"items": [t.to_dict(include_assignees=False) for t in tasks], "total": len(tasks)})


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    """Task detail; ``available_actions`` is filled when X-User-Id is sent."""
    task = task_service.get_task(task_id)
    result = task.to_dict()
    if request.headers.get("X-User-Id"):
        actor = get_active_user(current_user_id())
        result["available_actions"] = task_lifecycle.available_actions(
            task, actor.role, assignment_service.is_assigned(task.id, actor.id),
        )
    return jsonify(result)


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id):
    return jsonify(task_service.soft_delete_task(task_id, current_user_id()))


@task_bp.route("/tasks/<int:task_id>/restore", methods=["POST"])
def restore_task(task_id):
    return jsonify(task_service.restore_task(task_id, current_user_id()))


@task_bp.route("/tasks/<int:task_id>/permanent", methods=["DELETE"])
def hard_delete_task(task_id):
    return jsonify(task_service.hard_delete_task(task_id, current_user_id()))


@task_bp.route("/tasks/purge", methods=["POST"])
def purge_deleted_tasks():
    """Body: {"cutoff_days"?: int, "limit"?: int}"""
    data = json_body()
    try:
        cutoff_days = int(data.get("cutoff_days", task_service.PURGE_RETENTION_DAYS))
        limit = int(data.get("limit", task_service.PURGE_BATCH_LIMIT))
    except (TypeError, ValueError):
        raise ValidationError("cutoff_days and limit must be integers") from None
    return jsonify(task_service.purge_soft_deleted_tasks(cutoff_days, limit, requested_by=current_user_id()))


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks/<int:task_id>/start", methods=["POST"])
def start_work(task_id):
    data = json_body()
    return jsonify(task_lifecycle.start_work(task_id, current_user_id(), note=data.get("note")))


@task_bp.route("/tasks/<int:task_id>/request-review", methods=["POST"])
def request_review(task_id):
    return jsonify(task_lifecycle.request_review(task_id, current_user_id()))


@task_bp.route("/tasks/<int:task_id>/approve", methods=["POST"])
def approve(task_id):
    data = json_body()
    return jsonify(task_lifecycle.approve_and_close(task_id, current_user_id(), data.get("comments")))


@task_bp.route("/tasks/<int:task_id>/reject", methods=["POST"])
def reject(task_id):
    data = json_body()
    return jsonify(task_lifecycle.reject_and_reopen(task_id, current_user_id(), data.get("comments")))


@task_bp.route("/tasks/<int:task_id>/reopen", methods=["POST"])
def reopen(task_id):
    return jsonify(task_lifecycle.reopen_task(task_id, current_user_id()))


# ═══════════════════════════════════════════════════════════════════════════
#  ASSIGNEES
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks/<int:task_id>/assignees", methods=["GET"])
def list_assignees(task_id):
    task_service.get_task(task_id)
    return jsonify({"items": assignment_service.list_for_task(task_id)})


@task_bp.route("/tasks/<int:task_id>/assignees", methods=["POST"])
def add_assignees(task_id):
    data = json_body()
    result = assignment_service.assign(task_id, _user_ids(data), current_user_id())
    return jsonify({"success": True, "message": "Users assigned", **result})


@task_bp.route("/tasks/<int:task_id>/assignees", methods=["PUT"])
def replace_assignees(task_id):
    data = json_body()
    result = assignment_service.replace_all(task_id, _user_ids(data), current_user_id())
    return jsonify({"success": True, "message": "Assignees updated", **result})


@task_bp.route("/tasks/<int:task_id>/assignees/<int:user_id>", methods=["DELETE"])
def remove_assignee(task_id, user_id):
    result = assignment_service.unassign(task_id, user_id, removed_by=current_user_id())
    return jsonify({"success": True, "message": "User unassigned", **result})


@task_bp.route("/users/<int:user_id>/tasks", methods=["GET"])
def list_user_tasks(user_id):
    tasks = assignment_service.list_tasks_for_user(user_id)
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)})


# ═══════════════════════════════════════════════════════════════════════════
#  PROGRESS LOG
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks/<int:task_id>/progress", methods=["GET"])
def list_progress(task_id):
    logs = task_lifecycle.list_progress_logs(task_id)
    return jsonify({"items": [entry.to_dict() for entry in logs]})


@task_bp.route("/tasks/<int:task_id>/progress", methods=["POST"])
def log_progress(task_id):
    data = json_body()
    status = data.get("status")
    if not status:
        raise ValidationError("status is required", code=E.VALIDATION_REQUIRED)
    return jsonify(task_lifecycle.log_progress(task_id, current_user_id(), status, data.get("note"))), 201


# ═══════════════════════════════════════════════════════════════════════════
#  FILES
# ═══════════════════════════════════════════════════════════════════════════

@task_bp.route("/tasks/<int:task_id>/files", methods=["GET"])
def list_files(task_id):
    files = storage_service.list_task_files(task_id)
    return jsonify({"items": [f.to_dict() for f in files]})


@task_bp.route("/tasks/<int:task_id>/files", methods=["POST"])
def upload_file(task_id):
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("file is required", code=E.VALIDATION_REQUIRED)
    result = storage_service.upload_task_file(
        task_id, current_user_id(), upload.filename, upload.mimetype, upload.stream,
    )
    return jsonify(result), 201


@task_bp.route("/task-files/<int:file_id>", methods=["DELETE"])
def delete_file(file_id):
    return jsonify(storage_service.delete_task_file(file_id, current_user_id()))
