"""
File storage: allow-list validation, upload side effects and compensation.
"""

import io
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from taskflow.core.exceptions import ConflictError, PartialFailure, PermissionDenied, ValidationError
from taskflow.models import db
from taskflow.models.task import Task, TaskFile, TaskProgressLog
from taskflow.models.user import User
from taskflow.services import storage_service
from taskflow.services.storage_service import (
    ALLOWED_AVATAR_TYPES,
    AVATARS_BUCKET,
    TASK_FILES_BUCKET,
    build_storage_path,
    validate_file,
)
from taskflow.utils.errors import E

NOW = datetime(2026, 5, 4, 12, 0, 0, tzinfo=timezone.utc)


def _pdf(body=b"%PDF-1.7 fake"):
    return io.BytesIO(body)


def _stored(storage, bucket):
    root = os.path.join(storage.root, bucket)
    return sorted(
        os.path.relpath(os.path.join(dirpath, name), root)
        for dirpath, _, names in os.walk(root)
        for name in names
    )


class TestValidateFile:
    def test_pdf_allowed(self):
        result = validate_file("report.pdf", "application/pdf")
        assert result == {"valid": True, "extension": "pdf", "warnings": []}

    def test_extension_is_case_insensitive(self):
        assert validate_file("SCAN.JPG")["extension"] == "jpg"

    def test_exe_rejected_with_allowed_list(self):
        with pytest.raises(ValidationError) as exc:
            validate_file("report.exe")
        assert exc.value.code == E.VALIDATION_FILE_TYPE
        assert 'File type "EXE" is not allowed' in exc.value.message
        assert "PDF, JPG, JPEG, PNG, DOC, DOCX, XLS, XLSX" in exc.value.message

    @pytest.mark.parametrize("name", ["README", ".bashrc", ""])
    def test_missing_extension(self, name):
        with pytest.raises(ValidationError, match="must have an extension"):
            validate_file(name)

    def test_mime_mismatch_only_warns(self):
        result = validate_file("photo.png", "application/pdf")
        assert result["valid"] is True
        assert len(result["warnings"]) == 1

    @pytest.mark.parametrize("name,mime", [("scan.JPG", "IMAGE/JPEG"), ("scan.jpg", "image/jpg"), ("scan.jpeg", "image/jpg")])
    def test_mime_is_case_insensitive_and_accepts_jpg_alias(self, name, mime):
        assert validate_file(name, mime)["warnings"] == []

    def test_avatar_list_excludes_documents(self):
        with pytest.raises(ValidationError, match="Allowed types: JPG, JPEG, PNG"):
            validate_file("cv.pdf", allowed=ALLOWED_AVATAR_TYPES)


def test_storage_path_uses_entity_millis_and_token():
    assert build_storage_path(42, "pdf", NOW, token="ab12cd34") == f"42/{int(NOW.timestamp() * 1000)}-ab12cd34.pdf"


def test_storage_paths_differ_within_one_millisecond():
    assert build_storage_path(42, "pdf", NOW) != build_storage_path(42, "pdf", NOW)


class TestLocalStorage:
    def test_put_never_overwrites(self, storage):
        storage.put(TASK_FILES_BUCKET, "1/a.pdf", b"first")
        with pytest.raises(FileExistsError):
            storage.put(TASK_FILES_BUCKET, "1/a.pdf", b"second")
        assert storage.read(TASK_FILES_BUCKET, "1/a.pdf") == b"first"

    def test_escaping_bucket_rejected(self, storage):
        with pytest.raises(ValueError):
            storage.put(TASK_FILES_BUCKET, "../../etc/passwd", b"x")


class TestUploadTaskFile:
    def test_assignee_upload_starts_todo_task(self, make_task, worker, storage):
        task = make_task(assignees=[worker])

        result = storage_service.upload_task_file(task.id, worker.id, "report.pdf", "application/pdf", _pdf(), now=NOW)

        assert result["task_status"] == "Work-In-Progress"
        assert result["file"]["size_bytes"] == len(b"%PDF-1.7 fake")
        assert storage.read(TASK_FILES_BUCKET, result["file"]["storage_path"]) == b"%PDF-1.7 fake"
        db.session.expire_all()
        assert db.session.get(Task, task.id).task_status == "Work-In-Progress"
        assert TaskProgressLog.query.filter_by(task_id=task.id).count() == 1

    def test_admin_upload_leaves_status(self, make_task, admin):
        task = make_task()

        result = storage_service.upload_task_file(task.id, admin.id, "plan.xlsx", None, io.BytesIO(b"x"), now=NOW)

        assert result["task_status"] == "ToDo"

    def test_outsider_cannot_upload(self, make_task, outsider, storage):
        task = make_task()
        with pytest.raises(PermissionDenied):
            storage_service.upload_task_file(task.id, outsider.id, "a.pdf", None, _pdf(), now=NOW)
        assert _stored(storage, TASK_FILES_BUCKET) == []

    def test_disallowed_type_writes_nothing(self, make_task, worker):
        task = make_task(assignees=[worker])
        with pytest.raises(ValidationError):
            storage_service.upload_task_file(task.id, worker.id, "virus.exe", None, io.BytesIO(b"MZ"))
        assert TaskFile.query.count() == 0

    def test_too_large(self, app, make_task, worker):
        task = make_task(assignees=[worker])
        with patch.dict(app.config, {"MAX_UPLOAD_BYTES": 4}):
            with pytest.raises(ValidationError, match="maximum size"):
                storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)

    def test_failed_insert_removes_blob(self, make_task, worker, storage):
        task = make_task(assignees=[worker])

        with patch.object(db.session, "commit", side_effect=RuntimeError("db down")):
            with pytest.raises(RuntimeError):
                storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)

        assert _stored(storage, TASK_FILES_BUCKET) == []
        db.session.expire_all()
        assert db.session.get(Task, task.id).task_status == "ToDo"

    def test_failed_cleanup_raises_partial_failure(self, make_task, worker, storage):
        task = make_task(assignees=[worker])

        with patch.object(db.session, "commit", side_effect=RuntimeError("db down")), \
                patch.object(storage, "delete", side_effect=OSError("read-only")):
            with pytest.raises(PartialFailure) as exc:
                storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)

        assert exc.value.details["completed"] == ["blob_write"]
        assert exc.value.details["failed"] == "db_insert"
        [orphan] = _stored(storage, TASK_FILES_BUCKET)
        assert exc.value.details["orphaned_path"] == f"{TASK_FILES_BUCKET}/{orphan}"

    def test_constraint_violation_is_conflict_and_blob_removed(self, make_task, worker, storage):
        task = make_task(assignees=[worker])
        clash = IntegrityError("INSERT INTO task_files", {}, Exception("UNIQUE constraint failed"))

        with patch.object(db.session, "commit", side_effect=clash):
            with pytest.raises(ConflictError) as exc:
                storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)

        assert exc.value.code == E.CONFLICT_DUPLICATE
        assert _stored(storage, TASK_FILES_BUCKET) == []

    def test_same_instant_uploads_keep_both_files(self, make_task, worker, storage):
        task = make_task(assignees=[worker])

        first = storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(b"one"), now=NOW)["file"]
        second = storage_service.upload_task_file(task.id, worker.id, "b.pdf", None, _pdf(b"two"), now=NOW)["file"]

        assert first["storage_path"] != second["storage_path"]
        assert TaskFile.query.filter_by(task_id=task.id).count() == 2
        assert storage.read(TASK_FILES_BUCKET, first["storage_path"]) == b"one"
        assert storage.read(TASK_FILES_BUCKET, second["storage_path"]) == b"two"

    def test_taken_path_is_retried_not_overwritten(self, make_task, worker, storage):
        task = make_task(assignees=[worker])
        taken = build_storage_path(task.id, "pdf", NOW, token="aaaaaaaa")
        fresh = build_storage_path(task.id, "pdf", NOW, token="bbbbbbbb")
        storage.put(TASK_FILES_BUCKET, taken, b"existing")

        with patch.object(storage_service, "build_storage_path", side_effect=[taken, fresh]):
            result = storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)

        assert result["file"]["storage_path"] == fresh
        assert storage.read(TASK_FILES_BUCKET, taken) == b"existing"

    def test_no_free_path_is_conflict(self, make_task, worker, storage):
        task = make_task(assignees=[worker])
        taken = build_storage_path(task.id, "pdf", NOW, token="aaaaaaaa")
        storage.put(TASK_FILES_BUCKET, taken, b"existing")

        with patch.object(storage_service, "build_storage_path", return_value=taken):
            with pytest.raises(ConflictError, match="free storage path"):
                storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)

        assert storage.read(TASK_FILES_BUCKET, taken) == b"existing"
        assert TaskFile.query.count() == 0


class TestDeleteTaskFile:
    def test_uploader_deletes(self, make_task, worker, storage):
        task = make_task(assignees=[worker])
        uploaded = storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)["file"]

        storage_service.delete_task_file(uploaded["id"], worker.id)

        assert TaskFile.query.count() == 0
        assert not storage.exists(TASK_FILES_BUCKET, uploaded["storage_path"])

    def test_other_user_cannot_delete(self, make_task, worker, outsider):
        task = make_task(assignees=[worker])
        uploaded = storage_service.upload_task_file(task.id, worker.id, "a.pdf", None, _pdf(), now=NOW)["file"]
        with pytest.raises(PermissionDenied):
            storage_service.delete_task_file(uploaded["id"], outsider.id)


class TestAvatar:
    def test_replaces_previous_avatar(self, worker, storage):
        first = storage_service.upload_avatar(worker.id, "me.png", "image/png", io.BytesIO(b"1"), uploaded_by=worker.id, now=NOW)
        later = NOW.replace(hour=13)
        second = storage_service.upload_avatar(worker.id, "me.jpg", "image/jpeg", io.BytesIO(b"2"), uploaded_by=worker.id, now=later)

        assert not storage.exists(AVATARS_BUCKET, first["avatar_path"])
        assert storage.exists(AVATARS_BUCKET, second["avatar_path"])
        db.session.expire_all()
        assert db.session.get(User, worker.id).avatar_path == second["avatar_path"]

    def test_cannot_change_someone_else(self, worker, outsider):
        with pytest.raises(PermissionDenied):
            storage_service.upload_avatar(worker.id, "me.png", None, io.BytesIO(b"1"), uploaded_by=outsider.id)
