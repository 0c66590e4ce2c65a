"""
Test configuration and fixtures.

Every test gets a fresh SQLite file with the full schema; app code commits
freely, so isolation comes from the throwaway database rather than from
rolling back a wrapping transaction.
"""

import os

from cryptography.fernet import Fernet

os.environ["ENV"] = "test"
os.environ["REDIS_ENABLED"] = "false"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import app.models  # noqa: E402,F401
from app.db import Base, build_engine, db_manager, get_db  # noqa: E402

pytest_plugins = [
    "tests.fixtures.account_fixtures",
    "tests.fixtures.friend_fixtures",
    "tests.fixtures.scenario_fixtures",
    "tests.fixtures.transport_fixtures",
]


@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'linestep_test.db'}")
    Base.metadata.create_all(engine)
    db_manager.configure(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return db_manager.session_factory


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db):
    """TestClient whose requests share the test session."""
    from app.main import create_app

    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
