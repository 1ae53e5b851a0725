"""
Shared pytest fixtures for the Award Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - officer / admin: users holding the procurement and admin roles
    - committee: one financial and one technical committee member
    - review_chain: sets the fallback REVIEW_CHAIN for one test
"""

import pytest

from award_engine import create_app
from award_engine.models import db as _db

from factories import make_user


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def officer():
    return make_user("Olivia Officer", "Procurement_Officer")


@pytest.fixture()
def admin():
    return make_user("Ada Admin", "Admin")


@pytest.fixture()
def committee():
    """(financial member, technical member)."""
    return make_user("Fiona Finance"), make_user("Theo Tech")


@pytest.fixture()
def review_chain(app, monkeypatch):
    """Call with a role list to use it as the fallback review chain."""
    def _set(roles):
        monkeypatch.setitem(app.config, "REVIEW_CHAIN", list(roles))
        return roles
    return _set
