"""
HTTP API tests: request → blueprint → service → response.

    1. Error contract and actor header
    2. Task lifecycle over HTTP
    3. Assignees, progress, files
    4. Edit requests, projects, users, reports, health
"""

import io

from taskflow.models import db
from taskflow.models.task import Task, TaskState
from taskflow.utils.errors import E


def _task_status(task_id):
    db.session.expire_all()
    return db.session.get(Task, task_id).task_status


# ═════════════════════════════════════════════════════════════════════════════
# 1. Error contract
# ═════════════════════════════════════════════════════════════════════════════


class TestErrorContract:
    def test_missing_user_header_is_401(self, client, make_task):
        task = make_task()

        res = client.post(f"/api/v1/tasks/{task.id}/start")

        assert res.status_code == 401
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == E.UNAUTHENTICATED

    def test_non_numeric_user_header(self, client, make_task):
        task = make_task()
        res = client.post(f"/api/v1/tasks/{task.id}/start", headers={"X-User-Id": "abc"})
        assert res.status_code == 401

    def test_forbidden_body_shape(self, client, headers, make_task, outsider):
        task = make_task()

        res = client.post(f"/api/v1/tasks/{task.id}/start", headers=headers(outsider))

        assert res.status_code == 403
        assert res.get_json() == {
            "success": False,
            "message": "User is not assigned to this task",
            "code": E.NOT_ASSIGNEE,
        }

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == E.NOT_FOUND

    def test_non_json_body_rejected(self, client, headers, make_task, worker):
        task = make_task(assignees=[worker])
        res = client.post(
            f"/api/v1/tasks/{task.id}/start", data="note=hi",
            headers={**headers(worker), "Content-Type": "text/plain"},
        )
        assert res.status_code == 415

    def test_json_array_body_rejected(self, client, headers, make_task, worker):
        task = make_task(assignees=[worker])
        res = client.post(f"/api/v1/tasks/{task.id}/start", json=["hi"], headers=headers(worker))
        assert res.status_code == 400

    def test_timing_headers(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers


# ═════════════════════════════════════════════════════════════════════════════
# 2. Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskEndpoints:
    def test_create_and_fetch(self, client, headers, admin, worker):
        res = client.post("/api/v1/tasks", json={
            "title": "Prepare audit", "priority": "high", "due_date": "2026-11-30",
            "assignee_ids": [worker.id],
        }, headers=headers(admin))

        assert res.status_code == 201
        task = res.get_json()["task"]
        assert task["task_status"] == "ToDo"
        assert task["assignee_ids"] == [worker.id]

        res = client.get(f"/api/v1/tasks/{task['id']}", headers=headers(worker))
        assert res.get_json()["available_actions"] == ["start_work"]

    def test_create_requires_title(self, client, headers, admin):
        res = client.post("/api/v1/tasks", json={"title": "  "}, headers=headers(admin))
        assert res.status_code == 400
        assert res.get_json()["code"] == E.VALIDATION_REQUIRED

    def test_list_filters(self, client, make_task, worker):
        make_task("alpha", assignees=[worker])
        make_task("beta", state=TaskState.DONE)

        res = client.get("/api/v1/tasks?status=Done")
        assert [t["title"] for t in res.get_json()["items"]] == ["beta"]

        res = client.get(f"/api/v1/tasks?assignee_id={worker.id}")
        assert [t["title"] for t in res.get_json()["items"]] == ["alpha"]

    def test_full_review_cycle(self, client, headers, make_task, worker, super_admin):
        task = make_task(assignees=[worker])

        res = client.post(f"/api/v1/tasks/{task.id}/start", json={"note": "On it"}, headers=headers(worker))
        assert res.get_json()["new_status"] == "Work-In-Progress"

        res = client.post(f"/api/v1/tasks/{task.id}/request-review", headers=headers(worker))
        assert res.get_json()["new_status"] == "Done"

        res = client.post(f"/api/v1/tasks/{task.id}/reject", json={"comments": ""}, headers=headers(super_admin))
        assert res.status_code == 400
        assert res.get_json()["message"] == "Comments are required when rejecting review"

        res = client.post(f"/api/v1/tasks/{task.id}/reject", json={"comments": "Redo"}, headers=headers(super_admin))
        assert res.get_json()["new_status"] == "Work-In-Progress"

        client.post(f"/api/v1/tasks/{task.id}/request-review", headers=headers(worker))
        res = client.post(f"/api/v1/tasks/{task.id}/approve", headers=headers(super_admin))
        assert res.status_code == 200
        assert _task_status(task.id) == "Closed"

        res = client.post(f"/api/v1/tasks/{task.id}/request-review", headers=headers(worker))
        assert res.status_code == 409
        assert res.get_json()["code"] == E.TASK_CLOSED

        res = client.post(f"/api/v1/tasks/{task.id}/reopen", headers=headers(super_admin))
        assert res.get_json()["new_status"] == "Work-In-Progress"

    def test_approve_wrong_state_is_409(self, client, headers, make_task, super_admin):
        task = make_task(state=TaskState.WORK_IN_PROGRESS)
        res = client.post(f"/api/v1/tasks/{task.id}/approve", headers=headers(super_admin))
        assert res.status_code == 409
        assert res.get_json()["message"] == "Can only approve tasks in Done state"

    def test_delete_and_restore(self, client, headers, make_task, super_admin):
        task = make_task()

        assert client.delete(f"/api/v1/tasks/{task.id}", headers=headers(super_admin)).status_code == 200
        assert client.get(f"/api/v1/tasks/{task.id}").status_code == 404
        deleted = client.get("/api/v1/tasks/deleted", headers=headers(super_admin)).get_json()["items"]
        assert [t["id"] for t in deleted] == [task.id]

        res = client.post(f"/api/v1/tasks/{task.id}/restore", headers=headers(super_admin))
        assert res.get_json()["task"]["deleted_at"] is None


# ═════════════════════════════════════════════════════════════════════════════
# 3. Assignees, progress, files
# ═════════════════════════════════════════════════════════════════════════════


class TestAssigneeEndpoints:
    def test_add_replace_remove(self, client, headers, make_task, admin, worker, outsider):
        task = make_task()
        base = f"/api/v1/tasks/{task.id}/assignees"

        res = client.post(base, json={"user_ids": [worker.id]}, headers=headers(admin))
        assert res.get_json()["assignee_ids"] == [worker.id]

        res = client.put(base, json={"user_ids": [outsider.id]}, headers=headers(admin))
        assert res.get_json()["assignee_ids"] == [outsider.id]

        items = client.get(base).get_json()["items"]
        assert [i["user"]["full_name"] for i in items] == ["Olive Outsider"]

        res = client.delete(f"{base}/{outsider.id}", headers=headers(admin))
        assert res.get_json()["removed"] is True
        res = client.delete(f"{base}/{outsider.id}", headers=headers(admin))
        assert res.get_json()["removed"] is False

    def test_empty_assign_rejected(self, client, headers, make_task, admin):
        task = make_task()
        res = client.post(f"/api/v1/tasks/{task.id}/assignees", json={"user_ids": []}, headers=headers(admin))
        assert res.status_code == 400
        assert res.get_json()["message"] == "At least one user must be selected"

    def test_user_task_list(self, client, make_task, worker):
        make_task("mine", assignees=[worker])
        res = client.get(f"/api/v1/users/{worker.id}/tasks")
        assert [t["title"] for t in res.get_json()["items"]] == ["mine"]


class TestProgressEndpoints:
    def test_log_and_list(self, client, headers, make_task, worker):
        task = make_task(state=TaskState.WORK_IN_PROGRESS, assignees=[worker])

        res = client.post(
            f"/api/v1/tasks/{task.id}/progress",
            json={"status": "Work-In-Progress", "note": "50%"}, headers=headers(worker),
        )
        assert res.status_code == 201

        items = client.get(f"/api/v1/tasks/{task.id}/progress").get_json()["items"]
        assert [i["progress_note"] for i in items] == ["50%"]

    def test_status_required(self, client, headers, make_task, worker):
        task = make_task(assignees=[worker])
        res = client.post(f"/api/v1/tasks/{task.id}/progress", json={"note": "x"}, headers=headers(worker))
        assert res.status_code == 400


class TestFileEndpoints:
    def test_upload_list_delete(self, client, headers, make_task, worker):
        task = make_task(assignees=[worker])

        res = client.post(
            f"/api/v1/tasks/{task.id}/files",
            data={"file": (io.BytesIO(b"%PDF"), "brief.pdf", "application/pdf")},
            headers=headers(worker), content_type="multipart/form-data",
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["task_status"] == "Work-In-Progress"

        files = client.get(f"/api/v1/tasks/{task.id}/files").get_json()["items"]
        assert [f["file_name"] for f in files] == ["brief.pdf"]

        res = client.delete(f"/api/v1/task-files/{body['file']['id']}", headers=headers(worker))
        assert res.status_code == 200

    def test_disallowed_type(self, client, headers, make_task, worker):
        task = make_task(assignees=[worker])
        res = client.post(
            f"/api/v1/tasks/{task.id}/files",
            data={"file": (io.BytesIO(b"MZ"), "setup.exe")},
            headers=headers(worker), content_type="multipart/form-data",
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == E.VALIDATION_FILE_TYPE


# ═════════════════════════════════════════════════════════════════════════════
# 4. Edit requests, projects, users, reports, health
# ═════════════════════════════════════════════════════════════════════════════


class TestEditRequestEndpoints:
    def test_request_approve_flow(self, client, headers, make_task, admin, super_admin):
        task = make_task()

        res = client.post(
            f"/api/v1/tasks/{task.id}/edit-requests",
            json={"changes": {"priority": "urgent"}}, headers=headers(admin),
        )
        assert res.status_code == 201
        request_id = res.get_json()["request"]["id"]

        res = client.post(
            f"/api/v1/tasks/{task.id}/edit-requests",
            json={"changes": {"priority": "low"}}, headers=headers(admin),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == E.CONFLICT_PENDING_REQUEST

        pending = client.get("/api/v1/edit-requests/pending", headers=headers(super_admin)).get_json()["items"]
        assert [p["id"] for p in pending] == [request_id]

        res = client.post(f"/api/v1/edit-requests/{request_id}/approve", headers=headers(super_admin))
        assert res.get_json()["task"]["priority"] == "urgent"

        history = client.get(f"/api/v1/tasks/{task.id}/edit-history").get_json()["items"]
        assert history[0]["status"] == "approved"

    def test_no_changes_is_422(self, client, headers, make_task, admin):
        task = make_task()
        res = client.post(f"/api/v1/tasks/{task.id}/edit-requests", json={"changes": {}}, headers=headers(admin))
        assert res.status_code == 422
        assert res.get_json()["message"] == "At least one field must be changed"

    def test_direct_edit(self, client, headers, make_task, super_admin):
        task = make_task()
        res = client.post(
            f"/api/v1/tasks/{task.id}/direct-edit",
            json={"changes": {"title": "Renamed"}}, headers=headers(super_admin),
        )
        assert res.status_code == 200
        assert res.get_json()["request"]["comments"] == "Direct edit by Super Admin"


class TestProjectEndpoints:
    def test_close_and_reopen(self, client, headers, admin, make_project, make_task):
        project = make_project()
        task = make_task(project=project)

        res = client.post(f"/api/v1/projects/{project.id}/close", headers=headers(admin))
        assert res.get_json()["closed_task_ids"] == [task.id]
        assert _task_status(task.id) == "Closed"

        res = client.post(f"/api/v1/projects/{project.id}/reopen", headers=headers(admin))
        assert res.get_json()["reopened_task_ids"] == [task.id]
        assert _task_status(task.id) == "ToDo"

    def test_create_and_list(self, client, headers, admin):
        res = client.post("/api/v1/projects", json={"name": "Gemini"}, headers=headers(admin))
        assert res.status_code == 201
        names = [p["name"] for p in client.get("/api/v1/projects").get_json()["items"]]
        assert names == ["Gemini"]


class TestUserEndpoints:
    def test_create_user_fallback(self, client, headers, admin):
        res = client.post("/api/v1/users", json={"email": "new@example.com", "full_name": "New"}, headers=headers(admin))
        assert res.status_code == 201
        body = res.get_json()
        assert body["temporary_password"]
        assert body["warnings"]

    def test_change_role_requires_super_admin(self, client, headers, admin, worker):
        res = client.put(f"/api/v1/users/{worker.id}/role", json={"role": "admin"}, headers=headers(admin))
        assert res.status_code == 403

    def test_avatar_upload(self, client, headers, worker):
        res = client.post(
            f"/api/v1/users/{worker.id}/avatar",
            data={"file": (io.BytesIO(b"\x89PNG"), "me.png", "image/png")},
            headers=headers(worker), content_type="multipart/form-data",
        )
        assert res.status_code == 201
        assert res.get_json()["avatar_path"].startswith(f"{worker.id}/")


class TestRoleGate:
    def test_plain_user_cannot_list_deleted_tasks(self, client, headers, worker):
        res = client.get("/api/v1/tasks/deleted", headers=headers(worker))
        assert res.status_code == 403
        assert res.get_json()["code"] == E.FORBIDDEN

    def test_unknown_user_is_refused(self, client):
        res = client.get("/api/v1/edit-requests/pending", headers={"X-User-Id": "9999"})
        assert res.status_code == 403

    def test_promotion_takes_effect_immediately(self, client, headers, admin, super_admin):
        assert client.get("/api/v1/edit-requests/pending", headers=headers(admin)).status_code == 403

        res = client.put(f"/api/v1/users/{admin.id}/role", json={"role": "super_admin"}, headers=headers(super_admin))
        assert res.status_code == 200

        assert client.get("/api/v1/edit-requests/pending", headers=headers(admin)).status_code == 200


class TestReportEndpoints:
    def test_report_requires_type(self, client, headers, super_admin):
        res = client.post("/api/v1/reports", json={}, headers=headers(super_admin))
        assert res.status_code == 400

    def test_local_report(self, client, headers, super_admin, make_task):
        make_task()
        res = client.post("/api/v1/reports", json={"report_type": "company_wide"}, headers=headers(super_admin))
        body = res.get_json()
        assert body["source"] == "local"
        assert body["report"]["summary"]["total_tasks"] == 1

    def test_audit_log_lists_generations(self, client, headers, super_admin, worker):
        client.post("/api/v1/reports", json={"report_type": "company_wide"}, headers=headers(super_admin))

        res = client.get("/api/v1/reports/audit", headers=headers(super_admin))

        assert res.status_code == 200
        [entry] = res.get_json()["items"]
        assert entry["report_type"] == "company_wide"
        assert entry["status"] == "success"
        assert client.get("/api/v1/reports/audit", headers=headers(worker)).status_code == 403


class TestHealth:
    def test_ready(self, client):
        assert client.get("/api/v1/health").get_json() == {"status": "ok", "app": "taskflow"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["functions"]["status"] == "not_configured"
