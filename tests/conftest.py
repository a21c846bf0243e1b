"""Shared fixtures: an in-memory SQLite database and seeded users."""

import itertools
import os
from datetime import datetime, timedelta, timezone

os.environ["POSTGRES_DSN"] = "sqlite+pysqlite:///:memory:"
os.environ["TRACING_ENABLED"] = "false"
os.environ["SERVICE_NAME"] = "test"

import pytest

from welfarehub.common.auth import Actor
from welfarehub.common.db import Base, SessionLocal, engine
from welfarehub.common.users import User, UserPreferences
import welfarehub.services.audience.models  # noqa: F401
import welfarehub.services.campaigns.models  # noqa: F401
import welfarehub.services.donations.models  # noqa: F401

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def schema():
    """Fresh tables for every test."""

    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role="admin")


@pytest.fixture
def moderator():
    return Actor(user_id="mod-1", role="moderator")


@pytest.fixture
def add_user(session_factory):
    """Insert a user (and optional preferences); created 100 days before NOW by default."""

    counter = itertools.count(1)

    def _add(
        role="user",
        location=None,
        email=None,
        phone=None,
        created_at=None,
        last_login_at=None,
        user_id=None,
        preferences=None,
    ):
        n = next(counter)
        user = User(
            user_id=user_id or f"u{n:03d}",
            name=f"User {n}",
            role=role,
            location=location,
            email=email,
            phone=phone,
            created_at=created_at or NOW - timedelta(days=100) + timedelta(minutes=n),
            last_login_at=last_login_at,
        )
        with session_factory() as db:
            db.add(user)
            if preferences:
                db.add(UserPreferences(user_id=user.user_id, **preferences))
            db.commit()
        return user

    return _add
