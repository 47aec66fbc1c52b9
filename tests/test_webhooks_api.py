"""Tests for the identity webhook route."""

from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from evergreen.models import User, Workspace
from tests.test_constants import TEST_WEBHOOK_SECRET

HEADERS = {"X-Webhook-Token": TEST_WEBHOOK_SECRET}


def test_rejects_bad_token(client_with_db: TestClient, db: Session) -> None:
    response = client_with_db.post(
        "/api/webhooks/identity",
        json={"type": "organization.created", "data": {"id": "org_hook"}},
        headers={"X-Webhook-Token": "wrong"},
    )
    assert response.status_code == 403
    assert db.query(Workspace).filter(Workspace.external_org_id == "org_hook").count() == 0


def test_rejects_missing_token(client_with_db: TestClient) -> None:
    response = client_with_db.post("/api/webhooks/identity", json={"type": "organization.created", "data": {}})
    assert response.status_code == 422


def test_membership_event(client_with_db: TestClient, db: Session) -> None:
    response = client_with_db.post(
        "/api/webhooks/identity",
        json={
            "type": "organizationMembership.created",
            "data": {
                "organization": {"id": "org_hook", "name": "Hook Co"},
                "public_user_data": {"user_id": "user_hook", "identifier": "h@hook.example"},
                "role": "org:admin",
            },
        },
        headers=HEADERS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["handled"] is True
    user = db.query(User).filter(User.external_user_id == "user_hook").one()
    assert body["user_id"] == str(user.id)
    assert user.role == "admin"


def test_unknown_event_is_acknowledged(client_with_db: TestClient) -> None:
    response = client_with_db.post(
        "/api/webhooks/identity", json={"type": "email.created", "data": {}}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["handled"] is False


def test_malformed_event(client_with_db: TestClient) -> None:
    response = client_with_db.post(
        "/api/webhooks/identity", json={"type": "user.created", "data": {}}, headers=HEADERS
    )
    assert response.status_code == 422
