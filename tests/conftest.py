"""
Shared pytest fixtures for the Work Permit Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_permit: create a permit through the service layer
    - active_permit: WP-1001 driven through submit → review → approve
"""

import pytest

from permit_tracker import create_app
from permit_tracker.models import db as _db

REQUESTER = "req@site.test"
REVIEWER = "rev@site.test"
APPROVER = "app@site.test"

ROLE_EMAILS = {"requester": REQUESTER, "reviewer": REVIEWER, "approver": APPROVER}

WINDOW_FROM = "2024-01-01T08:00"
WINDOW_TO = "2024-01-03T08:00"


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


# ── Convenience fixtures ─────────────────────────────────────────────────


def permit_payload(**overrides) -> dict:
    data = {
        "valid_from": WINDOW_FROM,
        "valid_to": WINDOW_TO,
        "role_emails": dict(ROLE_EMAILS),
        "actor_name": "Sita Rao",
        "document": {
            "WorkType": "Hot Work",
            "RequesterName": "Sita Rao",
            "ExactLocation": "Tank farm T-12",
            "Vendor": "Acme Fabricators",
            "Desc": "Weld repair on manifold",
            "Latitude": "22.3072",
            "Longitude": "73.1812",
            "A_Q1": "Yes",
            "A_Q2": "NA",
            "H_H2S": "Y",
            "P_Helmet": "Y",
        },
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_permit():
    """Factory: create a permit through the service layer and return its dict."""
    from permit_tracker.services.permit_service import create_permit

    def _make(**overrides):
        return create_permit(permit_payload(**overrides))

    return _make


def _act(permit_id, role, action, actor_name=None, **payload):
    """Run one lifecycle action through the engine."""
    from permit_tracker.services.permit_lifecycle import execute_action

    return execute_action({
        "permit_id": permit_id,
        "role": role,
        "actor_name": actor_name or f"{role} User",
        "action": action,
        "payload": payload,
    })


@pytest.fixture()
def active_permit(make_permit):
    """A permit taken through submit → review → approve (status Active)."""
    permit = make_permit(submit=True)
    pid = permit["permit_id"]
    _act(pid, "Reviewer", "review", "Ravi Iyer", comment="Gas test OK")
    _act(pid, "Approver", "approve", "Anil Mehta", comment="Proceed")
    return pid


@pytest.fixture()
def act():
    """The ``_act`` helper as a fixture: ``act(pid, role, action, name, **payload)``."""
    return _act
