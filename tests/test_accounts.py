"""Tests for OAuth account persistence and synced provider items."""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from evergreen.errors import EntityValidationError, IsolationViolation
from evergreen.services.accounts import (
    disconnect_account,
    list_accounts,
    save_oauth_account,
    upsert_synced_item,
)
from evergreen.services.entity_service import find_entities
from evergreen.services.identity_resolver import RequestContext
from tests.test_constants import TEST_ACCESS_TOKEN_PLACEHOLDER, TEST_REFRESH_TOKEN_PLACEHOLDER

TOKENS = {"access_token": TEST_ACCESS_TOKEN_PLACEHOLDER, "refresh_token": TEST_REFRESH_TOKEN_PLACEHOLDER}


@pytest.fixture
def ctx(workspace, user) -> RequestContext:
    return RequestContext(workspace_id=workspace.id, user_id=user.id, external_user_id=user.external_user_id)


@pytest.fixture
def other_ctx(workspace, other_user) -> RequestContext:
    return RequestContext(workspace_id=workspace.id, user_id=other_user.id)


class TestOAuthAccounts:
    def test_connect_creates_account(self, db: Session, ctx) -> None:
        account = save_oauth_account(db, ctx, "email_account", TOKENS, {"email": "Alice@Acme.example", "provider": "google"})
        assert account.user_id == ctx.user_id
        assert account.data["email"] == "alice@acme.example"
        assert account.data["connected"] is True
        assert account.data["tokens"] == TOKENS
        assert account.meta["source"] == "oauth"

    def test_reconnect_updates_in_place(self, db: Session, ctx) -> None:
        first = save_oauth_account(db, ctx, "email_account", TOKENS, {"email": "a@acme.example"})
        disconnect_account(db, ctx, first.id)
        again = save_oauth_account(db, ctx, "email_account", {"access_token": "new"}, {"email": "A@acme.example"})
        assert again.id == first.id
        assert again.data["connected"] is True
        assert again.data["tokens"] == {"access_token": "new"}
        assert len(list_accounts(db, ctx, "email_account", connected_only=False)) == 1

    def test_same_email_for_two_users_stays_separate(self, db: Session, ctx, other_ctx) -> None:
        mine = save_oauth_account(db, ctx, "calendar_account", TOKENS, {"email": "shared@acme.example"})
        theirs = save_oauth_account(db, other_ctx, "calendar_account", TOKENS, {"email": "shared@acme.example"})
        assert mine.id != theirs.id
        assert [a.id for a in list_accounts(db, other_ctx, "calendar_account")] == [theirs.id]

    def test_requires_email(self, db: Session, ctx) -> None:
        with pytest.raises(EntityValidationError, match="email"):
            save_oauth_account(db, ctx, "email_account", TOKENS, {"provider": "google"})

    def test_rejects_non_account_type(self, db: Session, ctx) -> None:
        with pytest.raises(EntityValidationError):
            save_oauth_account(db, ctx, "email", TOKENS, {"email": "a@acme.example"})
        with pytest.raises(EntityValidationError):
            list_accounts(db, ctx, "deal")

    def test_disconnect_clears_tokens(self, db: Session, ctx) -> None:
        account = save_oauth_account(db, ctx, "email_account", TOKENS, {"email": "a@acme.example"})
        updated = disconnect_account(db, ctx, account.id)
        assert updated.data["connected"] is False
        assert updated.data["tokens"] is None
        assert list_accounts(db, ctx, "email_account") == []

    def test_cannot_disconnect_someone_elses_account(self, db: Session, ctx, other_ctx) -> None:
        account = save_oauth_account(db, ctx, "email_account", TOKENS, {"email": "a@acme.example"})
        with pytest.raises(IsolationViolation):
            disconnect_account(db, other_ctx, account.id)


class TestSyncedItems:
    def test_insert_then_update(self, db: Session, ctx) -> None:
        email, created = upsert_synced_item(db, ctx, "email", "msg-1", {"subject": "Hi"})
        assert created
        assert email.data["externalId"] == "msg-1"
        again, created = upsert_synced_item(db, ctx, "email", " msg-1 ", {"subject": "Hi (edited)"})
        assert not created
        assert again.id == email.id
        assert again.data["subject"] == "Hi (edited)"

    def test_each_user_keeps_own_copy(self, db: Session, ctx, other_ctx, workspace) -> None:
        mine, _ = upsert_synced_item(db, ctx, "calendar_event", "evt-1", {"title": "Standup"})
        theirs, created = upsert_synced_item(db, other_ctx, "calendar_event", "evt-1", {"title": "Standup"})
        assert created
        assert mine.id != theirs.id
        assert len(find_entities(db, workspace.id, "calendar_event", user_id=ctx.user_id)) == 1

    def test_requires_external_id(self, db: Session, ctx) -> None:
        with pytest.raises(EntityValidationError):
            upsert_synced_item(db, ctx, "email", "  ", {})

    def test_rejects_other_types(self, db: Session, ctx) -> None:
        with pytest.raises(EntityValidationError):
            upsert_synced_item(db, ctx, "deal", "x", {})
