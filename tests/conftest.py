"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tests.test_constants import (
    TEST_ORG_ID,
    TEST_OTHER_ORG_ID,
    TEST_OTHER_USER_ID,
    TEST_SECRET_KEY,
    TEST_USER_ID,
    TEST_WEBHOOK_SECRET,
)

# Force an in-memory SQLite database when pytest runs; don't inherit from .env
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("SECRET_KEY", TEST_SECRET_KEY)
os.environ.setdefault("WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
os.environ.pop("USER_SCOPED_TYPES", None)


@pytest.fixture
def client_with_db(db: Session) -> TestClient:
    """TestClient with get_db overridden to use the test db session."""
    from evergreen.db.session import get_db
    from evergreen.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def _restore_entity_type_registry():
    """Undo register_entity_type / mark_user_scoped calls made by a test."""
    from evergreen.entities import types

    saved = dict(types._REGISTRY)
    yield
    types._REGISTRY.clear()
    types._REGISTRY.update(saved)


@pytest.fixture(scope="session")
def _create_schema() -> None:
    """Create all tables once per test session."""
    from evergreen.db.session import Base, engine
    from evergreen.models import Entity, User, Workspace  # noqa: F401

    Base.metadata.create_all(engine)


@pytest.fixture
def db(_create_schema: None) -> Session:
    """Database session for model tests. All changes are rolled back after each test."""
    from evergreen.db import engine

    connection = engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def _make_workspace(db: Session, external_org_id: str, name: str):
    from evergreen.models import Workspace
    from evergreen.services.identity_resolver import slug_for_org

    ws = Workspace(
        external_org_id=external_org_id,
        name=name,
        slug=slug_for_org(external_org_id),
        settings={},
    )
    db.add(ws)
    db.commit()
    db.refresh(ws)
    return ws


def _make_user(db: Session, external_user_id: str, workspace, email: str, role: str = "member"):
    from evergreen.models import User

    user = User(
        external_user_id=external_user_id,
        email=email,
        workspace_id=workspace.id if workspace is not None else None,
        role=role,
        settings={},
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def workspace(db: Session):
    """Workspace for TEST_ORG_ID."""
    return _make_workspace(db, TEST_ORG_ID, "Acme")


@pytest.fixture
def other_workspace(db: Session):
    """Second, unrelated workspace (TEST_OTHER_ORG_ID)."""
    return _make_workspace(db, TEST_OTHER_ORG_ID, "Globex")


@pytest.fixture
def user(db: Session, workspace):
    """Member of ``workspace``."""
    return _make_user(db, TEST_USER_ID, workspace, "alice@acme.example")


@pytest.fixture
def other_user(db: Session, workspace):
    """Second member of the same ``workspace``."""
    return _make_user(db, TEST_OTHER_USER_ID, workspace, "bob@acme.example")


@pytest.fixture
def make_user(db: Session):
    """Factory: make_user(external_user_id, workspace, email=..., role=...)."""

    def _factory(external_user_id: str, workspace, email: str = "", role: str = "member"):
        return _make_user(db, external_user_id, workspace, email, role)

    return _factory


@pytest.fixture
def auth_headers():
    """Factory: Authorization header carrying a session token for (user, workspace)."""
    from evergreen.services.auth import create_session_token

    def _headers(user, workspace) -> dict[str, str]:
        token = create_session_token(user.external_user_id, workspace.external_org_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
