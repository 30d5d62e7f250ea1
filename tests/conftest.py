"""
Shared pytest fixtures for the ImmiTracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - auth_enabled: API_AUTH_ENABLED=true for one test
    - admin_headers / user_headers: Bearer JWT headers
    - make_template / make_application: persisted fixtures rows
"""

from datetime import date

import pytest

from immitracker import create_app
from immitracker.models import db as _db
from immitracker.models.application import Application, StatusHistory
from immitracker.models.milestone import MilestoneTemplate
from immitracker.services.jwt_service import generate_access_token
from immitracker.utils.milestone_normalizer import categorize
from immitracker.utils.string_normalizer import normalize


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
        yield _db.session
        _db.session.rollback()
        _db.session.remove()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Auth fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def auth_enabled(app):
    """Turn on JWT enforcement for the duration of one test."""
    previous = app.config["API_AUTH_ENABLED"]
    app.config["API_AUTH_ENABLED"] = "true"
    yield
    app.config["API_AUTH_ENABLED"] = previous


@pytest.fixture()
def admin_headers(app):
    token = generate_access_token("admin-1", roles=["admin"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def user_headers(app):
    token = generate_access_token("user-1", roles=[])
    return {"Authorization": f"Bearer {token}"}


# ── Data fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def make_template():
    """Insert a live milestone template directly, bypassing the lifecycle."""

    def _make(name, program_type="work_permit", program_sub_type="", **fields):
        template = MilestoneTemplate(
            name=name,
            normalized_name=fields.pop("normalized_name", normalize(name)),
            category=fields.pop("category", categorize(name)),
            program_type=program_type,
            program_sub_type=program_sub_type,
            **fields,
        )
        _db.session.add(template)
        _db.session.commit()
        return template

    return _make


@pytest.fixture()
def make_application():
    """Insert an application, optionally with one status-history entry."""

    def _make(program_type="work_permit", *, application_type_id=None, template_id=None,
              status_name="Biometrics Completed"):
        application = Application(
            user_id="user-1",
            application_type_id=application_type_id,
            program_type=program_type,
            submission_date=date(2026, 1, 15),
        )
        _db.session.add(application)
        _db.session.flush()
        if template_id is not None:
            _db.session.add(StatusHistory(
                application_id=application.id,
                status_name=status_name,
                status_date=date(2026, 2, 1),
                template_id=template_id,
            ))
        _db.session.commit()
        return application

    return _make
