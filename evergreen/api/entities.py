"""Entity API routes.

Owner and workspace always come from the request context, never from the body.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from evergreen.api.deps import get_request_context
from evergreen.db.session import get_db
from evergreen.entities.types import get_entity_type
from evergreen.errors import EntityNotFoundError
from evergreen.schemas.entity import (
    EntityCreate,
    EntityList,
    EntityListParams,
    EntityRead,
    EntitySearchRequest,
    EntityUpdate,
)
from evergreen.services.entity_service import (
    archive_entity,
    count_entities,
    create_entity,
    find_entities,
    get_owned_entity,
    search_entities,
    update_entity,
)
from evergreen.services.identity_resolver import RequestContext

router = APIRouter()


def _owner_for(entity_type: str, ctx: RequestContext) -> uuid.UUID | None:
    """Owning user for queries: always set for user-scoped types."""
    return ctx.user_id if get_entity_type(entity_type).user_scoped else None


def _load(db: Session, ctx: RequestContext, entity_type: str, entity_id: uuid.UUID):
    entity = get_owned_entity(db, ctx.workspace_id, entity_id, ctx.user_id)
    if entity.type != get_entity_type(entity_type).name:
        raise EntityNotFoundError(f"Entity {entity_id} not found")
    return entity


@router.post("/{entity_type}", status_code=201, response_model=EntityRead)
def api_create_entity(
    entity_type: str,
    body: EntityCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> EntityRead:
    """Create an entity owned by the caller."""
    entity = create_entity(
        db,
        ctx.workspace_id,
        entity_type,
        body.data,
        body.relationships,
        user_id=ctx.user_id,
        created_by=ctx.external_user_id,
        metadata=body.metadata,
    )
    return EntityRead.model_validate(entity)


@router.get("/{entity_type}", response_model=EntityList)
def api_list_entities(
    entity_type: str,
    params: Annotated[EntityListParams, Query()],
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> EntityList:
    """List entities of a type visible to the caller."""
    owner = _owner_for(entity_type, ctx)
    items = find_entities(
        db,
        ctx.workspace_id,
        entity_type,
        user_id=owner,
        related_to=params.related_to,
        search=params.search,
        limit=params.limit,
        offset=params.offset,
        order_by=params.order_by,
        order_direction=params.order_direction,
        include_archived=params.include_archived,
    )
    total = count_entities(
        db,
        ctx.workspace_id,
        entity_type,
        user_id=owner,
        related_to=params.related_to,
        search=params.search,
        include_archived=params.include_archived,
    )
    return EntityList(items=[EntityRead.model_validate(e) for e in items], total=total)


@router.post("/{entity_type}/search", response_model=EntityList)
def api_search_entities(
    entity_type: str,
    body: EntitySearchRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> EntityList:
    """Match entities by ``data`` field equality."""
    items = search_entities(
        db,
        ctx.workspace_id,
        entity_type,
        body.match,
        user_id=_owner_for(entity_type, ctx),
        limit=body.limit,
    )
    return EntityList(items=[EntityRead.model_validate(e) for e in items], total=len(items))


@router.get("/{entity_type}/{entity_id}", response_model=EntityRead)
def api_get_entity(
    entity_type: str,
    entity_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> EntityRead:
    """Get one entity; user-scoped records are ownership-checked."""
    return EntityRead.model_validate(_load(db, ctx, entity_type, entity_id))


@router.patch("/{entity_type}/{entity_id}", response_model=EntityRead)
def api_update_entity(
    entity_type: str,
    entity_id: uuid.UUID,
    body: EntityUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> EntityRead:
    """Merge (or replace) an entity's data."""
    _load(db, ctx, entity_type, entity_id)
    entity = update_entity(
        db,
        ctx.workspace_id,
        entity_id,
        body.data,
        user_id=ctx.user_id,
        relationships=body.relationships,
        metadata=body.metadata,
        replace=body.replace,
    )
    return EntityRead.model_validate(entity)


@router.post("/{entity_type}/{entity_id}/archive", response_model=EntityRead)
def api_archive_entity(
    entity_type: str,
    entity_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> EntityRead:
    """Archive (soft delete) an entity."""
    _load(db, ctx, entity_type, entity_id)
    return EntityRead.model_validate(
        archive_entity(db, ctx.workspace_id, entity_id, user_id=ctx.user_id)
    )
