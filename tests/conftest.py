"""
Shared fixtures: an in-memory SQLite database per test and an API client
bound to it.
"""

import os

# Must be set before database.py is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import Base, UserStats, get_db, make_engine
from leveling import decompose_level


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Insert a UserStats row with a consistent level for the given XP."""
    def _make(user_id, cumulative_xp=0, bodyweight=80.0, **fields):
        level, _ = decompose_level(cumulative_xp)
        values = dict(
            user_id=user_id,
            username=user_id,
            level=level,
            cumulative_xp=cumulative_xp,
            xp_is_cumulative=True,
            bodyweight=bodyweight,
            updated_at=datetime.utcnow(),
        )
        values.update(fields)
        stats = UserStats(**values)
        db.add(stats)
        db.commit()
        return stats
    return _make


@pytest.fixture
def client(session_factory):
    from main import app

    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_test_db
    yield TestClient(app)
    app.dependency_overrides.clear()
