"""
Shared pytest fixtures for the OmPro test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - manager / administrator / executor: one profile per role
    - manager_headers / administrator_headers / executor_headers: bearer auth
    - group, make_task, xlsx_bytes: domain data helpers
"""

import io
from datetime import datetime, timezone

import pytest
from openpyxl import Workbook

from ompro import create_app
from ompro.models import db as _db
from ompro.models.auth import ROLE_ADMINISTRATOR, ROLE_EXECUTOR, ROLE_MANAGER
from ompro.models.maintenance import STATUS_PENDING, Group, Task
from ompro.services.jwt_service import generate_access_token
from ompro.services.user_service import create_user

PASSWORD = "secret123"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def feed(app):
    return app.extensions["change_feed"]


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def manager():
    return create_user(name="Marta Gestora", login="marta", role=ROLE_MANAGER, password=PASSWORD)


@pytest.fixture()
def administrator():
    return create_user(name="Alan Admin", login="alan", role=ROLE_ADMINISTRATOR, password=PASSWORD)


@pytest.fixture()
def executor():
    return create_user(name="João Executor", login="joão silva", role=ROLE_EXECUTOR, password=PASSWORD)


def _bearer(user):
    return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}


@pytest.fixture()
def manager_headers(manager):
    return _bearer(manager)


@pytest.fixture()
def administrator_headers(administrator):
    return _bearer(administrator)


@pytest.fixture()
def executor_headers(executor):
    return _bearer(executor)


# ── Domain data ──────────────────────────────────────────────────────────


@pytest.fixture()
def group():
    g = Group(name="Parada Geral 2024")
    _db.session.add(g)
    _db.session.commit()
    return g


@pytest.fixture()
def make_task(group):
    """Factory: insert a task directly (bypassing import)."""

    def _make(**overrides):
        values = {
            "group_id": group.id,
            "om_number": "1000",
            "description": "Inspecionar bomba",
            "work_center": "MEC",
            "circuit": "",
            "min_date": "",
            "max_date": "",
            "status": STATUS_PENDING,
            "updated_at": datetime.now(timezone.utc),
            "excel_data": {},
        }
        values.update(overrides)
        task = Task(**values)
        _db.session.add(task)
        _db.session.commit()
        return task

    return _make


@pytest.fixture()
def xlsx_bytes():
    """Factory: build an .xlsx in memory from a list of rows (first row = headers)."""

    def _build(rows):
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(list(row))
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    return _build
