"""Shared fixtures: a fresh SQLite database per test, users and a TestClient."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import scriptgov.models  # noqa: F401
from scriptgov.core.permissions import UserRole
from scriptgov.core.security import create_access_token
from scriptgov.db.base import Base
from scriptgov.db.session import build_engine, get_db
from scriptgov.main import app
from scriptgov.services.role_service import role_service
from scriptgov.services.script_service import script_service

USERS = {
    "u-admin": UserRole.admin,
    "u-mgr": UserRole.manager,
    "u-mgr2": UserRole.manager,
    "u-dev": UserRole.developer,
    "u-dev2": UserRole.developer,
    "u-view": UserRole.viewer,
}

SELECT_SQL = "SELECT id, name\nFROM customers\nWHERE active = 1"


def email_of(user_id: str) -> str:
    return f"{user_id}@example.com"


def auth_headers(user_id: str) -> dict:
    token = create_access_token({"sub": user_id, "email": email_of(user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'scriptgov.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def users(db):
    """Grant every role in USERS."""
    for user_id, role in USERS.items():
        role_service.upsert(db, user_id, email_of(user_id), role, "system")
    return USERS


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def create_script(db, users):
    """Factory: create a script as ``user_id`` and return the ActionResult."""
    def _create(script_id="s1", sql=SELECT_SQL, user_id="u-dev", **fields):
        data = {"script_id": script_id, "name": f"Script {script_id}", "sql_content": sql}
        data.update(fields)
        result = script_service.create_script(
            db, data, user_id, email_of(user_id), USERS.get(user_id),
        )
        assert result.success, result.message
        return result
    return _create
