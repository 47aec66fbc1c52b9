"""Model tests: table constraints and defaults."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from evergreen.models import Entity, User, UserRole, Workspace


def test_workspace_defaults(db: Session) -> None:
    ws = Workspace(external_org_id="org_models", name="Models", slug="org-models")
    db.add(ws)
    db.commit()
    db.refresh(ws)
    assert isinstance(ws.id, uuid.UUID)
    assert ws.settings == {}
    assert ws.created_at is not None


def test_workspace_external_org_id_unique(db: Session, workspace) -> None:
    db.add(Workspace(external_org_id=workspace.external_org_id, name="dup", slug="dup-slug"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_user_defaults_and_full_name(db: Session, workspace) -> None:
    user = User(external_user_id="user_models", workspace_id=workspace.id, first_name="Ada", last_name="Lovelace")
    db.add(user)
    db.commit()
    db.refresh(user)
    assert user.role == UserRole.MEMBER.value
    assert user.email == ""
    assert user.full_name == "Ada Lovelace"


def test_entity_requires_workspace(db: Session) -> None:
    db.add(Entity(workspace_id=uuid.uuid4(), type="deal", data={}))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_entity_metadata_column_and_archived(db: Session, workspace) -> None:
    entity = Entity(workspace_id=workspace.id, type="deal", data={"archived": True}, meta={"version": 1})
    db.add(entity)
    db.commit()
    db.refresh(entity)
    assert entity.meta == {"version": 1}
    assert entity.relationships == []
    assert entity.archived is True
    assert "deal" in repr(entity)
    assert "metadata" in Entity.__table__.c
