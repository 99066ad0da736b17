"""
Shared pytest fixtures for the Pattern Testing Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_pattern: factories for the marketplace collaborators
    - admin, creator, tester, pattern: ready-made entities
"""

from datetime import datetime, timedelta, timezone

import pytest

from pattern_testing import create_app
from pattern_testing.models import db as _db
from pattern_testing.models.marketplace import Pattern, User


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


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role="user", approved=False, name=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            role=role,
            pattern_testing_approved=approved,
            **fields,
        )
        if approved:
            user.tester_level = 1
            user.tester_xp = 0
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_pattern():
    def _make(creator, estimated_time="6-8 hours", category="Amigurumi", title="Granny Square Blanket"):
        pattern = Pattern(
            title=title,
            description="A cosy blanket",
            creator_id=creator.id,
            category=category,
            difficulty_level="intermediate",
            estimated_time=estimated_time,
            thumbnail_url="https://cdn.example.com/p.png",
        )
        _db.session.add(pattern)
        _db.session.commit()
        return pattern

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(role="admin", name="Ada Admin")


@pytest.fixture()
def creator(make_user):
    return make_user(role="creator", name="Cora Creator")


@pytest.fixture()
def tester(make_user):
    return make_user(approved=True, name="Tess Tester")


@pytest.fixture()
def pattern(make_pattern, creator):
    return make_pattern(creator)


@pytest.fixture()
def deadline():
    return datetime.now(timezone.utc) + timedelta(days=7)
