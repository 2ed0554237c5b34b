"""Project close / reopen cascade."""

import pytest

from taskflow.core.exceptions import PermissionDenied, TransitionError, ValidationError
from taskflow.models import db
from taskflow.models.notification import Notification
from taskflow.models.task import Task, TaskState
from taskflow.services import project_service, task_lifecycle, task_service


def _reload(task_id):
    db.session.expire_all()
    return db.session.get(Task, task_id)


class TestCreateProject:
    def test_admin_creates(self, admin):
        project = project_service.create_project(name="  Apollo  ", created_by=admin.id)
        assert project.name == "Apollo"
        assert project.status == "active"

    def test_name_required(self, admin):
        with pytest.raises(ValidationError):
            project_service.create_project(name=" ", created_by=admin.id)

    def test_user_cannot_create(self, worker):
        with pytest.raises(PermissionDenied):
            project_service.create_project(name="Side quest", created_by=worker.id)


class TestCloseProject:
    def test_closes_open_tasks_only(self, make_project, make_task, admin, worker):
        project = make_project()
        todo = make_task("a", project=project, assignees=[worker])
        wip = make_task("b", project=project, state=TaskState.WORK_IN_PROGRESS)
        done = make_task("c", project=project, state=TaskState.DONE)
        already = make_task("d", project=project, state=TaskState.CLOSED, closed_reason="manual")
        elsewhere = make_task("e")

        result = project_service.close_project(project.id, admin.id)

        assert sorted(result["closed_task_ids"]) == sorted([todo.id, wip.id, done.id])
        assert result["closed_task_count"] == 3
        for task_id, before in ((todo.id, "ToDo"), (wip.id, "Work-In-Progress"), (done.id, "Done")):
            task = _reload(task_id)
            assert task.task_status == "Closed"
            assert task.closed_reason == "project_closed"
            assert task.status_before_closure == before
            assert task.archived_at is not None
        assert _reload(already.id).closed_reason == "manual"
        assert _reload(elsewhere.id).task_status == "ToDo"
        assert Notification.query.filter_by(recipient_user_id=worker.id, type="project_closed").count() == 1

    def test_already_closed(self, make_project, admin):
        project = make_project(status="closed")
        with pytest.raises(TransitionError, match="already closed"):
            project_service.close_project(project.id, admin.id)

    def test_closed_project_rejects_new_tasks(self, make_project, admin):
        project = make_project(status="closed")
        with pytest.raises(ValidationError, match="closed project"):
            task_service.create_task(title="Late", created_by=admin.id, project_id=project.id)


class TestReopenProject:
    def test_restores_only_cascade_closed_tasks(self, make_project, make_task, admin):
        project = make_project()
        wip = make_task("b", project=project, state=TaskState.WORK_IN_PROGRESS)
        done = make_task("c", project=project, state=TaskState.DONE)
        manual = make_task("d", project=project, state=TaskState.CLOSED, closed_reason="manual")
        project_service.close_project(project.id, admin.id)

        result = project_service.reopen_project(project.id, admin.id)

        assert sorted(result["reopened_task_ids"]) == sorted([wip.id, done.id])
        wip, done, manual = _reload(wip.id), _reload(done.id), _reload(manual.id)
        assert wip.task_status == "Work-In-Progress"
        assert done.task_status == "Done"
        assert wip.closed_reason is None
        assert wip.archived_at is None
        assert wip.status_before_closure is None
        assert manual.task_status == "Closed"
        assert result["project"]["status"] == "active"

    def test_restored_task_continues_lifecycle(self, make_project, make_task, admin, worker):
        project = make_project()
        task = make_task(project=project, assignees=[worker])
        project_service.close_project(project.id, admin.id)
        project_service.reopen_project(project.id, admin.id)

        task_lifecycle.start_work(task.id, worker.id)

        assert _reload(task.id).task_status == "Work-In-Progress"

    def test_not_closed(self, make_project, admin):
        project = make_project()
        with pytest.raises(TransitionError, match="not closed"):
            project_service.reopen_project(project.id, admin.id)
