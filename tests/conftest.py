"""
Shared pytest fixtures for the Taskflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - storage: LocalStorage rooted in the test's tmp_path
    - make_user / make_project / make_task: ORM factories
    - super_admin, admin, worker, outsider: ready-made users
    - headers: X-User-Id header builder
"""

import pytest

from taskflow import create_app
from taskflow.models import db as _db
from taskflow.models.project import Project
from taskflow.models.task import Task, TaskAssignee, TaskState
from taskflow.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_USER, User
from taskflow.services.storage_service import LocalStorage


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        app.extensions["query_cache"].clear()
        yield
        app.extensions["query_cache"].clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture(autouse=True)
def storage(app, tmp_path):
    """Point blob storage at a per-test directory."""
    previous = app.extensions["storage"]
    app.extensions["storage"] = LocalStorage(str(tmp_path / "storage"))
    yield app.extensions["storage"]
    app.extensions["storage"] = previous


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role=ROLE_USER, *, full_name=None, email=None, is_active=True):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            full_name=full_name or f"User {counter['n']}",
            role=role,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_project(super_admin):
    def _make(name="Apollo", status="active"):
        project = Project(name=name, status=status, created_by=super_admin.id)
        _db.session.add(project)
        _db.session.commit()
        return project

    return _make


@pytest.fixture()
def make_task(super_admin):
    """Create a task directly, at any lifecycle state, bypassing guards."""

    def _make(title="Write report", *, state=TaskState.TODO, assignees=(), project=None, **fields):
        task = Task(
            title=title,
            task_status=TaskState(state).value,
            project_id=project.id if project else None,
            created_by=super_admin.id,
            **fields,
        )
        _db.session.add(task)
        _db.session.flush()
        for user in assignees:
            _db.session.add(TaskAssignee(task_id=task.id, user_id=user.id, assigned_by=super_admin.id))
        _db.session.commit()
        return task

    return _make


@pytest.fixture()
def super_admin(make_user):
    return make_user(ROLE_SUPER_ADMIN, full_name="Sam Super")


@pytest.fixture()
def admin(make_user):
    return make_user(ROLE_ADMIN, full_name="Ada Admin")


@pytest.fixture()
def worker(make_user):
    return make_user(ROLE_USER, full_name="Wes Worker")


@pytest.fixture()
def outsider(make_user):
    return make_user(ROLE_USER, full_name="Olive Outsider")


@pytest.fixture()
def headers():
    def _headers(user):
        return {"X-User-Id": str(user.id)}

    return _headers
