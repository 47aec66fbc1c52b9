"""Persistence for OAuth-connected accounts and synced provider items.

OAuth modules hand over already-exchanged tokens; sync jobs hand over items fetched
from provider APIs. Everything here is user-scoped and goes through the entity
service with the owning user id.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from evergreen.entities.types import get_entity_type
from evergreen.errors import EntityValidationError
from evergreen.models.entity import Entity
from evergreen.services.entity_service import (
    create_entity,
    find_entities,
    get_owned_entity,
    update_entity,
)
from evergreen.services.identity_resolver import RequestContext

logger = logging.getLogger(__name__)

ACCOUNT_TYPES = frozenset({"email_account", "calendar_account"})
SYNCED_TYPES = frozenset({"email", "calendar_event"})


def _account_email(profile: Mapping[str, Any]) -> str:
    email = (profile.get("email") or "").strip().lower()
    if not email:
        raise EntityValidationError("account profile must include an email")
    return email


def save_oauth_account(
    db: Session,
    ctx: RequestContext,
    account_type: str,
    tokens: Mapping[str, Any],
    profile: Mapping[str, Any],
) -> Entity:
    """Create or refresh the caller's connected account for one provider email.

    Re-connecting an account the user already has (even a disconnected one)
    updates it in place instead of creating a duplicate.
    """
    if account_type not in ACCOUNT_TYPES:
        raise EntityValidationError(f"account_type must be one of {sorted(ACCOUNT_TYPES)}")
    email = _account_email(profile)
    payload = {
        **dict(profile),
        "email": email,
        "tokens": dict(tokens),
        "connected": True,
    }

    existing = find_entities(
        db,
        ctx.workspace_id,
        account_type,
        user_id=ctx.user_id,
        where={"email": email},
        limit=1,
    )
    if existing:
        account = update_entity(
            db,
            ctx.workspace_id,
            existing[0].id,
            payload,
            user_id=ctx.user_id,
            metadata={"reconnectedBy": ctx.external_user_id or str(ctx.user_id)},
        )
        logger.info("%s reconnected: user=%s email=%s", account_type, ctx.user_id, email)
        return account

    account = create_entity(
        db,
        ctx.workspace_id,
        account_type,
        payload,
        user_id=ctx.user_id,
        created_by=ctx.external_user_id,
        metadata={"source": "oauth"},
    )
    logger.info("%s connected: user=%s email=%s", account_type, ctx.user_id, email)
    return account


def list_accounts(
    db: Session, ctx: RequestContext, account_type: str, *, connected_only: bool = True
) -> list[Entity]:
    if account_type not in ACCOUNT_TYPES:
        raise EntityValidationError(f"account_type must be one of {sorted(ACCOUNT_TYPES)}")
    where = {"connected": True} if connected_only else None
    return find_entities(db, ctx.workspace_id, account_type, user_id=ctx.user_id, where=where)


def disconnect_account(db: Session, ctx: RequestContext, account_id: Any) -> Entity:
    """Soft-disconnect: ``connected`` false and tokens cleared; the row is kept.

    The account id usually comes from a URL, so ownership is verified first.
    """
    account = get_owned_entity(db, ctx.workspace_id, account_id, ctx.user_id)
    if account.type not in ACCOUNT_TYPES:
        raise EntityValidationError(f"Entity {account_id} is not an account")
    updated = update_entity(
        db,
        ctx.workspace_id,
        account.id,
        {"connected": False, "tokens": None},
        user_id=ctx.user_id,
    )
    logger.info("%s disconnected: user=%s id=%s", account.type, ctx.user_id, account.id)
    return updated


def upsert_synced_item(
    db: Session,
    ctx: RequestContext,
    entity_type: str,
    external_id: str,
    data: Mapping[str, Any],
) -> tuple[Entity, bool]:
    """Write one provider item (email, calendar event) keyed by its provider id.

    Returns (entity, created). Lookup is confined to the caller's own records, so
    two users syncing the same message each keep a private copy.
    """
    if get_entity_type(entity_type).name not in SYNCED_TYPES:
        raise EntityValidationError(f"entity_type must be one of {sorted(SYNCED_TYPES)}")
    if not external_id or not str(external_id).strip():
        raise EntityValidationError("external_id is required")
    external_id = str(external_id).strip()
    payload = {**dict(data), "externalId": external_id}

    existing = find_entities(
        db,
        ctx.workspace_id,
        entity_type,
        user_id=ctx.user_id,
        where={"externalId": external_id},
        limit=1,
    )
    if existing:
        return update_entity(db, ctx.workspace_id, existing[0].id, payload, user_id=ctx.user_id), False
    entity = create_entity(
        db,
        ctx.workspace_id,
        entity_type,
        payload,
        user_id=ctx.user_id,
        created_by=ctx.external_user_id,
        metadata={"source": "sync"},
    )
    return entity, True
