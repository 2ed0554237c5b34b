"""
File Storage Service — task attachments and avatars.

Blobs go to a ``LocalStorage`` backend rooted at STORAGE_ROOT, one
directory per bucket, under ``<entity-id>/<timestamp>-<token>.<ext>``.
Blobs are created exclusively; an existing object is never overwritten.

The extension allow-list is authoritative. A MIME type that does not match
the extension is logged as a warning but does not block the upload.

A blob is written before its database row. If the row cannot be saved the
blob is deleted again; if that deletion fails too, ``PartialFailure`` is
raised naming the orphaned path.
"""

import logging
import os
import uuid
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from taskflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    PartialFailure,
    PermissionDenied,
    ValidationError,
)
from taskflow.models import db
from taskflow.models.task import TaskFile, TaskState
from taskflow.services.assignment_service import is_assigned
from taskflow.services.helpers.task_queries import get_live_task
from taskflow.services.notification_service import NotificationService
from taskflow.services.task_lifecycle import TaskAction, notify_transition, stage_transition
from taskflow.services.user_service import get_active_user, get_user
from taskflow.utils.errors import E

logger = logging.getLogger(__name__)

TASK_FILES_BUCKET = "task-files"
AVATARS_BUCKET = "avatars"
PATH_ATTEMPTS = 3

# Extension → expected MIME types
ALLOWED_TASK_FILE_TYPES = {
    "pdf": {"application/pdf"},
    "jpg": {"image/jpeg", "image/jpg"},
    "jpeg": {"image/jpeg", "image/jpg"},
    "png": {"image/png"},
    "doc": {"application/msword"},
    "docx": {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
    "xls": {"application/vnd.ms-excel"},
    "xlsx": {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"},
}
ALLOWED_AVATAR_TYPES = {ext: ALLOWED_TASK_FILE_TYPES[ext] for ext in ("jpg", "jpeg", "png")}


class LocalStorage:
    """Filesystem object store: ``<root>/<bucket>/<path>``."""

    def __init__(self, root):
        self.root = os.path.abspath(root)

    @classmethod
    def from_config(cls, config):
        return cls(config["STORAGE_ROOT"])

    def _full_path(self, bucket, path):
        full = os.path.abspath(os.path.join(self.root, bucket, path))
        if not full.startswith(os.path.join(self.root, bucket) + os.sep):
            raise ValueError(f"Invalid storage path: {path}")
        return full

    def put(self, bucket, path, data: bytes) -> int:
        """Create a new object. Raises FileExistsError if the path is taken."""
        full = self._full_path(bucket, path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "xb") as fh:
            fh.write(data)
        return len(data)

    def read(self, bucket, path) -> bytes:
        with open(self._full_path(bucket, path), "rb") as fh:
            return fh.read()

    def exists(self, bucket, path) -> bool:
        return os.path.exists(self._full_path(bucket, path))

    def delete(self, bucket, path) -> None:
        full = self._full_path(bucket, path)
        if os.path.exists(full):
            os.remove(full)


def _storage():
    return current_app.extensions["storage"]


def _extension(file_name):
    base = os.path.basename(file_name or "")
    if "." not in base.strip("."):
        return None
    return base.rsplit(".", 1)[-1].lower()


def validate_file(file_name, mime_type=None, *, allowed=None) -> dict:
    """Check a file against the allow-list.

    Returns:
        {"valid": True, "extension": str, "warnings": [...]}

    Raises:
        ValidationError: missing or disallowed extension.
    """
    allowed = allowed or ALLOWED_TASK_FILE_TYPES
    ext = _extension(file_name)
    if not ext:
        raise ValidationError("File must have an extension", code=E.VALIDATION_FILE_TYPE)
    if ext not in allowed:
        names = ", ".join(e.upper() for e in allowed)
        raise ValidationError(
            f'File type "{ext.upper()}" is not allowed. Allowed types: {names}',
            code=E.VALIDATION_FILE_TYPE,
            details={"allowed_extensions": list(allowed)},
        )

    warnings = []
    mime_type = (mime_type or "").strip().lower()
    if mime_type and mime_type not in allowed[ext]:
        logger.warning("MIME type mismatch file=%s mime=%s expected=%s", file_name, mime_type, sorted(allowed[ext]))
        warnings.append(f'MIME type "{mime_type}" does not match extension ".{ext}"')
    return {"valid": True, "extension": ext, "warnings": warnings}


def build_storage_path(entity_id, ext, now=None, token=None) -> str:
    """``<entity-id>/<timestamp-ms>-<token>.<ext>``, token random unless given."""
    now = now or datetime.now(timezone.utc)
    token = token or uuid.uuid4().hex[:8]
    return f"{entity_id}/{int(now.timestamp() * 1000)}-{token}.{ext}"


def _put_new_blob(bucket, entity_id, ext, data, now=None) -> str:
    """Write ``data`` at a fresh path and return it."""
    for _ in range(PATH_ATTEMPTS):
        path = build_storage_path(entity_id, ext, now)
        try:
            _storage().put(bucket, path, data)
        except FileExistsError:
            logger.warning("Storage path taken bucket=%s path=%s, retrying", bucket, path)
            continue
        return path
    raise ConflictError("Could not allocate a free storage path", code=E.CONFLICT_DUPLICATE)


def _read_limited(stream) -> bytes:
    data = stream.read() if hasattr(stream, "read") else bytes(stream)
    limit = current_app.config.get("MAX_UPLOAD_BYTES")
    if limit and len(data) > limit:
        raise ValidationError(f"File exceeds the maximum size of {limit} bytes")
    return data


def _commit_or_compensate(bucket, path):
    """Commit; on failure delete the blob this upload created.

    A constraint violation surfaces as ConflictError. PartialFailure is raised
    if the blob cannot be removed.
    """
    try:
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Saving file record failed bucket=%s path=%s, removing blob", bucket, path)
        try:
            _storage().delete(bucket, path)
        except OSError:
            logger.exception("Compensating delete failed bucket=%s path=%s", bucket, path)
            raise PartialFailure(
                "File was stored but its record could not be saved, and cleanup failed",
                completed=["blob_write"],
                failed="db_insert",
                details={"orphaned_path": f"{bucket}/{path}"},
            ) from exc
        if isinstance(exc, IntegrityError):
            raise ConflictError("File record conflicts with an existing one", code=E.CONFLICT_DUPLICATE) from exc
        raise


# ── Task files ───────────────────────────────────────────────────────────────

def upload_task_file(task_id, user_id, file_name, mime_type, stream, *, now=None) -> dict:
    """Attach a file to a task.

    An assignee uploading to a ToDo task also starts work on it, in the same
    transaction as the file record.

    Returns:
        {"success", "message", "file", "warnings", "task_status"}
    """
    check = validate_file(file_name, mime_type)
    task = get_live_task(task_id)
    actor = get_active_user(user_id)
    assignee = is_assigned(task.id, actor.id)
    if not (assignee or actor.is_privileged):
        raise PermissionDenied("Only assignees and admins can upload task files", user_id=user_id)

    data = _read_limited(stream)
    path = _put_new_blob(TASK_FILES_BUCKET, task.id, check["extension"], data, now)

    task_file = TaskFile(
        task_id=task.id,
        uploaded_by=actor.id,
        file_name=os.path.basename(file_name),
        storage_path=path,
        mime_type=mime_type,
        size_bytes=len(data),
    )
    db.session.add(task_file)
    plan = None
    if assignee and task.task_status == TaskState.TODO.value:
        plan = stage_transition(task, TaskAction.START_WORK, actor)
    _commit_or_compensate(TASK_FILES_BUCKET, path)
    logger.info("Task file uploaded task=%s file=%s size=%d by=%s", task.id, path, len(data), actor.id)

    if plan is not None:
        notify_transition(task, plan, actor.id)
    NotificationService.notify_document_uploaded(task, task_file)
    return {
        "success": True,
        "message": "File uploaded",
        "file": task_file.to_dict(),
        "warnings": check["warnings"],
        "task_status": task.task_status,
    }


def list_task_files(task_id) -> list[TaskFile]:
    get_live_task(task_id)
    return (
        TaskFile.query.filter_by(task_id=task_id)
        .order_by(TaskFile.created_at.desc(), TaskFile.id.desc())
        .all()
    )


def delete_task_file(file_id, user_id) -> dict:
    """Remove the record, then the blob (blob failure is logged only)."""
    task_file = db.session.get(TaskFile, file_id)
    if task_file is None:
        raise NotFoundError("Task file", file_id)
    actor = get_active_user(user_id)
    if not (actor.is_privileged or task_file.uploaded_by == actor.id):
        raise PermissionDenied("Only the uploader or an admin can delete this file", user_id=user_id)

    path = task_file.storage_path
    db.session.delete(task_file)
    db.session.commit()
    try:
        _storage().delete(TASK_FILES_BUCKET, path)
    except OSError:
        logger.warning("Blob delete failed after record removal path=%s", path, exc_info=True)
    return {"success": True, "message": "File deleted", "file_id": file_id}


# ── Avatars ──────────────────────────────────────────────────────────────────

def upload_avatar(user_id, file_name, mime_type, stream, *, uploaded_by, now=None) -> dict:
    """Store a profile image (jpg / jpeg / png) and point the user at it."""
    check = validate_file(file_name, mime_type, allowed=ALLOWED_AVATAR_TYPES)
    actor = get_active_user(uploaded_by)
    if actor.id != user_id and not actor.is_privileged:
        raise PermissionDenied("Cannot change another user's avatar", user_id=uploaded_by)
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    data = _read_limited(stream)
    path = _put_new_blob(AVATARS_BUCKET, user.id, check["extension"], data, now)

    previous = user.avatar_path
    user.avatar_path = path
    _commit_or_compensate(AVATARS_BUCKET, path)
    if previous and previous != path:
        try:
            _storage().delete(AVATARS_BUCKET, previous)
        except OSError:
            logger.warning("Old avatar cleanup failed path=%s", previous, exc_info=True)

    return {"success": True, "message": "Avatar updated", "avatar_path": path, "warnings": check["warnings"]}


def remove_blobs(bucket, paths) -> int:
    """Delete blobs whose records are already gone. Failures are logged, not raised."""
    removed = 0
    for path in paths:
        try:
            _storage().delete(bucket, path)
            removed += 1
        except OSError:
            logger.warning("Blob delete failed bucket=%s path=%s", bucket, path, exc_info=True)
    return removed
