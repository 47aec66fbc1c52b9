"""Entity service: create/read/update/search over the unified entities table.

Every query is built from ``scoped_query``: user-scoped types go through the
SecureQuery triple and require a user id, shared types through the workspace-only
scope. Fetch-by-id is workspace-scoped only; ``get_owned_entity`` and the write
paths add the ownership check for user-scoped types.

Entities are not hard-deleted in the normal lifecycle: ``archive_entity`` flips
``data.archived`` (active <-> archived). ``delete_entity`` exists for maintenance.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, case, exists, func, literal, or_, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement

from evergreen.config import get_settings
from evergreen.db.secure_query import SecureQuery, WorkspaceQuery, coerce_uuid, scoped_query
from evergreen.entities.relationships import (
    RelationshipEdge,
    add_edge,
    normalize_relationships,
    remove_edge,
    serialize_relationships,
    target_ids,
)
from evergreen.entities.types import get_entity_type, validate_payload
from evergreen.errors import EntityNotFoundError, EntityValidationError, StoreError
from evergreen.models.entity import Entity
from evergreen.models.user import User

logger = logging.getLogger(__name__)

ORDER_COLUMNS = {"created_at": Entity.created_at, "updated_at": Entity.updated_at}
ORDER_DIRECTIONS = frozenset({"asc", "desc"})


def _now() -> datetime:
    return datetime.now(UTC)


def extract_search_text(data: Any) -> str:
    """Flatten every string value in the payload into one searchable string."""
    parts: list[str] = []

    def _walk(value: Any) -> None:
        if isinstance(value, str):
            parts.append(value)
        elif isinstance(value, Mapping):
            for v in value.values():
                _walk(v)
        elif isinstance(value, (list, tuple)):
            for v in value:
                _walk(v)

    _walk(data)
    return " ".join(parts)


def _data_field_condition(key: str, value: Any) -> ColumnElement[bool]:
    """Equality predicate on one top-level ``data`` field."""
    if not isinstance(key, str) or not key:
        raise EntityValidationError("data field names must be non-empty strings")
    field = Entity.data[key]
    if value is None:
        return field.as_string().is_(None)
    if isinstance(value, bool):
        return field.as_boolean() == value
    if isinstance(value, int):
        return field.as_integer() == value
    if isinstance(value, float):
        return field.as_float() == value
    if isinstance(value, str):
        return field.as_string() == value
    raise EntityValidationError(f"Unsupported match value for data field '{key}': {value!r}")


def _relationship_condition(dialect: str, rel_type: Any, target_id: Any) -> ColumnElement[bool]:
    """Predicate: the stored edge list has a ``rel_type`` edge to ``target_id``.

    Matches the array form only; legacy map-form rows need
    ``canonicalize_relationships`` first.
    """
    if not isinstance(rel_type, str) or not rel_type.strip():
        raise EntityValidationError("relationship types must be non-empty strings")
    if target_id is None or not str(target_id).strip():
        raise EntityValidationError(f"relationship '{rel_type}' needs a target id")
    rel_type, target = rel_type.strip(), str(target_id).strip()
    if dialect == "postgresql":
        return type_coerce(Entity.relationships, JSONB).contains([{"type": rel_type, "targetId": target}])
    as_array = case(
        (func.json_type(Entity.relationships) == "array", Entity.relationships),
        else_=literal("[]"),
    )
    edges = func.json_each(as_array).table_valued("value", name="edge")
    return exists(
        select(literal(1))
        .select_from(edges)
        .where(
            func.json_extract(edges.c.value, "$.type") == rel_type,
            func.json_extract(edges.c.value, "$.targetId") == target,
        )
    )


def _resolve_limit(limit: int | None) -> int:
    settings = get_settings()
    if limit is None:
        return settings.default_query_limit
    if limit < 1:
        raise EntityValidationError("limit must be a positive integer")
    return min(limit, settings.max_query_limit)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        logger.exception("Entity %s failed", action)
        db.rollback()
        raise StoreError(f"Entity {action} failed") from exc


def _require_owner(
    db: Session, workspace_id: uuid.UUID, entity_type: str, user_id: Any
) -> uuid.UUID | None:
    """Owner for a new row; the user must currently belong to the workspace."""
    spec = get_entity_type(entity_type)
    if user_id is None:
        if spec.user_scoped:
            raise EntityValidationError(
                f"user_id is required for user-scoped entity type '{spec.name}'"
            )
        return None
    owner_id = coerce_uuid(user_id, "user_id")
    owner_workspace = db.scalar(select(User.workspace_id).where(User.id == owner_id))
    if owner_workspace != workspace_id:
        raise EntityValidationError(f"User {owner_id} is not a member of workspace {workspace_id}")
    return owner_id


def _build_entity(
    workspace_id: uuid.UUID,
    entity_type: str,
    data: Any,
    relationships: Any,
    owner_id: uuid.UUID | None,
    created_by: str | None,
    metadata: Mapping[str, Any] | None,
    now: datetime,
) -> Entity:
    type_name = get_entity_type(entity_type).name
    payload = validate_payload(type_name, data)
    edges = normalize_relationships(relationships)
    meta = dict(metadata or {})
    meta["version"] = 1
    meta["createdBy"] = created_by or meta.get("createdBy") or (str(owner_id) if owner_id else "system")
    return Entity(
        id=uuid.uuid4(),
        workspace_id=workspace_id,
        user_id=owner_id,
        type=type_name,
        data=payload,
        relationships=serialize_relationships(edges),
        meta=meta,
        search_text=extract_search_text(payload),
        created_at=now,
        updated_at=now,
    )


def create_entity(
    db: Session,
    workspace_id: Any,
    entity_type: str,
    data: Any,
    relationships: Any = None,
    *,
    user_id: Any = None,
    created_by: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> Entity:
    """Insert a new entity.

    User-scoped types require ``user_id``; nothing is written when it is missing.
    ``created_at`` and ``updated_at`` are both set to the operation time.
    """
    ws_id = coerce_uuid(workspace_id, "workspace_id")
    owner_id = _require_owner(db, ws_id, entity_type, user_id)
    entity = _build_entity(ws_id, entity_type, data, relationships, owner_id, created_by, metadata, _now())
    db.add(entity)
    _commit(db, "create")
    db.refresh(entity)
    logger.debug("Entity created: type=%s id=%s workspace=%s user=%s", entity.type, entity.id, ws_id, owner_id)
    return entity


def create_entities(
    db: Session,
    workspace_id: Any,
    items: Iterable[Mapping[str, Any]],
    *,
    user_id: Any = None,
    created_by: str | None = None,
) -> list[Entity]:
    """Batch create. Each item has ``type``, ``data`` and optional ``relationships``/``metadata``.

    Every item is validated before anything is added, so a bad item writes nothing.
    """
    ws_id = coerce_uuid(workspace_id, "workspace_id")
    now = _now()
    built: list[Entity] = []
    for item in items:
        if "type" not in item or "data" not in item:
            raise EntityValidationError("each item needs 'type' and 'data'")
        owner_id = _require_owner(db, ws_id, item["type"], user_id)
        built.append(
            _build_entity(
                ws_id,
                item["type"],
                item["data"],
                item.get("relationships"),
                owner_id,
                created_by,
                item.get("metadata"),
                now,
            )
        )
    db.add_all(built)
    _commit(db, "batch create")
    for entity in built:
        db.refresh(entity)
    return built


def _find_statement(
    db: Session,
    workspace_id: Any,
    entity_type: str,
    *,
    user_id: Any,
    where: Mapping[str, Any] | None,
    related_to: Mapping[str, Any] | None,
    search: str | None,
    include_archived: bool,
):
    scope = scoped_query(workspace_id, entity_type, user_id)
    extra: list[ColumnElement[bool]] = [
        _data_field_condition(k, v) for k, v in (where or {}).items()
    ]
    if related_to:
        dialect = db.get_bind().dialect.name
        extra.extend(_relationship_condition(dialect, k, v) for k, v in related_to.items())
    if search and search.strip():
        term = f"%{search.strip()}%"
        extra.append(Entity.search_text.ilike(term))
    if not include_archived:
        extra.append(
            or_(
                Entity.data["archived"].as_boolean().is_(None),
                Entity.data["archived"].as_boolean() == False,  # noqa: E712
            )
        )
    return scope, scope.where(*extra)


def find_entities(
    db: Session,
    workspace_id: Any,
    entity_type: str,
    *,
    user_id: Any = None,
    where: Mapping[str, Any] | None = None,
    related_to: Mapping[str, Any] | None = None,
    search: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
    order_by: str = "created_at",
    order_direction: str = "desc",
    include_archived: bool = True,
) -> list[Entity]:
    """List entities of one type within a workspace.

    With ``user_id`` the SecureQuery triple is applied. Without it only shared
    types can be listed; a user-scoped type raises EntityValidationError rather
    than widening to every user's records.

    ``related_to`` maps relationship type to target id, e.g.
    ``{"conversation": conv_id}`` lists the messages of one conversation.
    """
    if order_by not in ORDER_COLUMNS:
        raise EntityValidationError(f"order_by must be one of {sorted(ORDER_COLUMNS)}")
    if order_direction not in ORDER_DIRECTIONS:
        raise EntityValidationError("order_direction must be 'asc' or 'desc'")
    if offset is not None and offset < 0:
        raise EntityValidationError("offset must be >= 0")

    scope, stmt = _find_statement(
        db,
        workspace_id,
        entity_type,
        user_id=user_id,
        where=where,
        related_to=related_to,
        search=search,
        include_archived=include_archived,
    )
    column = ORDER_COLUMNS[order_by]
    stmt = stmt.order_by(column.asc() if order_direction == "asc" else column.desc(), Entity.id)
    stmt = stmt.limit(_resolve_limit(limit))
    if offset:
        stmt = stmt.offset(offset)
    rows = list(db.scalars(stmt).all())
    return scope.filter_results(rows).records


def count_entities(
    db: Session,
    workspace_id: Any,
    entity_type: str,
    *,
    user_id: Any = None,
    where: Mapping[str, Any] | None = None,
    related_to: Mapping[str, Any] | None = None,
    search: str | None = None,
    include_archived: bool = True,
) -> int:
    _, stmt = _find_statement(
        db,
        workspace_id,
        entity_type,
        user_id=user_id,
        where=where,
        related_to=related_to,
        search=search,
        include_archived=include_archived,
    )
    return db.scalar(select(func.count()).select_from(stmt.subquery())) or 0


def search_entities(
    db: Session,
    workspace_id: Any,
    entity_type: str,
    match: Mapping[str, Any],
    *,
    user_id: Any = None,
    limit: int | None = None,
) -> list[Entity]:
    """Equality search over ``data`` fields (all criteria must match).

    User-scoped types still need ``user_id``; the same scope as ``find_entities``.
    """
    if not match:
        raise EntityValidationError("match criteria must not be empty")
    return find_entities(db, workspace_id, entity_type, user_id=user_id, where=match, limit=limit)


def find_entity_by_id(db: Session, workspace_id: Any, entity_id: Any) -> Entity | None:
    """Fetch by primary key within a workspace. No user ownership check."""
    ws_id = coerce_uuid(workspace_id, "workspace_id")
    ent_id = coerce_uuid(entity_id, "entity_id")
    stmt = select(Entity).where(and_(Entity.id == ent_id, Entity.workspace_id == ws_id)).limit(1)
    return db.scalars(stmt).first()


def require_entity(db: Session, workspace_id: Any, entity_id: Any) -> Entity:
    entity = find_entity_by_id(db, workspace_id, entity_id)
    if entity is None:
        raise EntityNotFoundError(f"Entity {entity_id} not found")
    return entity


def _write_scope(entity: Entity, workspace_id: Any, user_id: Any) -> SecureQuery | WorkspaceQuery:
    """Scope for writing an already-fetched row; verifies ownership for user-scoped types."""
    spec = get_entity_type(entity.type)
    if spec.user_scoped:
        if user_id is None:
            raise EntityValidationError(
                f"user_id is required to modify user-scoped entity type '{spec.name}'"
            )
        scope = SecureQuery.for_user(workspace_id, user_id, entity.type)
        scope.verify_result(entity)
        return scope
    return WorkspaceQuery(workspace_id, entity.type)


def get_owned_entity(db: Session, workspace_id: Any, entity_id: Any, user_id: Any) -> Entity:
    """Fetch by id and, for user-scoped types, verify the caller owns it.

    Use for ids that came from an untrusted source (URL parameters).
    """
    entity = require_entity(db, workspace_id, entity_id)
    if get_entity_type(entity.type).user_scoped:
        if user_id is None:
            raise EntityValidationError(
                f"user_id is required to read user-scoped entity type '{entity.type}'"
            )
        SecureQuery.for_user(workspace_id, user_id, entity.type).verify_result(entity)
    return entity


def _apply_update(
    db: Session, entity: Entity, scope: SecureQuery | WorkspaceQuery, values: dict[str, Any]
) -> Entity:
    values["updated_at"] = _now()
    stmt = scope.update_statement(Entity.id == entity.id, values=values).execution_options(
        synchronize_session=False
    )
    try:
        result = db.execute(stmt)
    except SQLAlchemyError as exc:
        logger.exception("Entity update failed: id=%s", entity.id)
        db.rollback()
        raise StoreError("Entity update failed") from exc
    if result.rowcount == 0:
        db.rollback()
        raise EntityNotFoundError(f"Entity {entity.id} not found")
    _commit(db, "update")
    db.refresh(entity)
    return entity


def update_entity(
    db: Session,
    workspace_id: Any,
    entity_id: Any,
    data: Mapping[str, Any] | None = None,
    *,
    user_id: Any = None,
    relationships: Any = None,
    metadata: Mapping[str, Any] | None = None,
    replace: bool = False,
) -> Entity:
    """Merge (or with ``replace=True`` replace) the payload of an entity.

    The merged payload is re-validated. For user-scoped types the fetched row's
    owner is verified against ``user_id`` before the write, and the UPDATE itself
    carries the full triple. ``relationships``, when given, replaces the edge list.
    Concurrent updates are last-write-wins.
    """
    entity = require_entity(db, workspace_id, entity_id)
    scope = _write_scope(entity, workspace_id, user_id)

    values: dict[str, Any] = {}
    if data is not None:
        if not isinstance(data, Mapping):
            raise EntityValidationError("data must be an object")
        merged = dict(data) if replace else {**(entity.data or {}), **data}
        payload = validate_payload(entity.type, merged)
        values["data"] = payload
        values["search_text"] = extract_search_text(payload)
    if relationships is not None:
        values["relationships"] = serialize_relationships(normalize_relationships(relationships))
    meta = dict(entity.meta or {})
    if metadata:
        meta.update(metadata)
    meta["version"] = int(meta.get("version") or 0) + 1
    values["meta"] = meta
    return _apply_update(db, entity, scope, values)


def archive_entity(db: Session, workspace_id: Any, entity_id: Any, *, user_id: Any = None) -> Entity:
    """Soft delete: set ``data.archived`` to true."""
    return update_entity(db, workspace_id, entity_id, {"archived": True}, user_id=user_id)


def restore_entity(db: Session, workspace_id: Any, entity_id: Any, *, user_id: Any = None) -> Entity:
    return update_entity(db, workspace_id, entity_id, {"archived": False}, user_id=user_id)


def delete_entity(db: Session, workspace_id: Any, entity_id: Any, *, user_id: Any = None) -> bool:
    """Physically delete an entity (maintenance only). Returns False if absent."""
    entity = find_entity_by_id(db, workspace_id, entity_id)
    if entity is None:
        return False
    _write_scope(entity, workspace_id, user_id)
    db.delete(entity)
    _commit(db, "delete")
    logger.info("Entity deleted: type=%s id=%s workspace=%s", entity.type, entity.id, entity.workspace_id)
    return True


def link_entities(
    db: Session,
    workspace_id: Any,
    source_id: Any,
    target_id: Any,
    relationship_type: str,
    *,
    user_id: Any = None,
    bidirectional: bool = True,
) -> Entity:
    """Add a ``relationship_type`` edge source -> target (and ``reverse_<type>`` back).

    Both entities must be in the workspace; user-scoped ones must belong to
    ``user_id`` even when only the forward edge is written.
    """
    if not relationship_type or not relationship_type.strip():
        raise EntityValidationError("relationship_type is required")
    source = require_entity(db, workspace_id, source_id)
    target = require_entity(db, workspace_id, target_id)
    source_scope = _write_scope(source, workspace_id, user_id)
    target_scope = _write_scope(target, workspace_id, user_id)

    edges, changed = add_edge(
        normalize_relationships(source.relationships),
        RelationshipEdge(relationship_type, str(target.id), target.type),
    )
    if changed:
        _apply_update(db, source, source_scope, {"relationships": serialize_relationships(edges)})

    if bidirectional:
        back, changed = add_edge(
            normalize_relationships(target.relationships),
            RelationshipEdge(f"reverse_{relationship_type}", str(source.id), source.type),
        )
        if changed:
            _apply_update(db, target, target_scope, {"relationships": serialize_relationships(back)})
    return source


def unlink_entities(
    db: Session,
    workspace_id: Any,
    source_id: Any,
    target_id: Any,
    relationship_type: str,
    *,
    user_id: Any = None,
    bidirectional: bool = True,
) -> bool:
    """Remove the edge (and its reverse). Returns True if anything was removed."""
    removed_any = False
    source = find_entity_by_id(db, workspace_id, source_id)
    if source is not None:
        edges, removed = remove_edge(
            normalize_relationships(source.relationships), relationship_type, str(target_id)
        )
        if removed:
            scope = _write_scope(source, workspace_id, user_id)
            _apply_update(db, source, scope, {"relationships": serialize_relationships(edges)})
            removed_any = True
    if bidirectional:
        target = find_entity_by_id(db, workspace_id, target_id)
        if target is not None:
            edges, removed = remove_edge(
                normalize_relationships(target.relationships),
                f"reverse_{relationship_type}",
                str(source_id),
            )
            if removed:
                scope = _write_scope(target, workspace_id, user_id)
                _apply_update(db, target, scope, {"relationships": serialize_relationships(edges)})
                removed_any = True
    return removed_any


def find_related(
    db: Session,
    workspace_id: Any,
    entity_id: Any,
    relationship_type: str | None = None,
    *,
    user_id: Any = None,
) -> list[Entity]:
    """Entities the given entity points at, within the same workspace.

    A user-scoped source must belong to ``user_id`` (IsolationViolation
    otherwise). Related records of user-scoped types owned by someone other
    than ``user_id`` are dropped; without ``user_id`` all of them are.
    """
    entity = find_entity_by_id(db, workspace_id, entity_id)
    if entity is None:
        return []
    if get_entity_type(entity.type).user_scoped:
        if user_id is None:
            raise EntityValidationError(
                f"user_id is required to follow links from user-scoped entity type '{entity.type}'"
            )
        SecureQuery.for_user(workspace_id, user_id, entity.type).verify_result(entity)
    ids: list[uuid.UUID] = []
    for raw in target_ids(normalize_relationships(entity.relationships), relationship_type):
        try:
            ids.append(uuid.UUID(raw))
        except ValueError:
            logger.warning("Skipping non-UUID relationship target %r on entity %s", raw, entity.id)
    if not ids:
        return []
    rows = db.scalars(
        select(Entity).where(Entity.workspace_id == entity.workspace_id, Entity.id.in_(ids))
    ).all()

    visible = [r for r in rows if not get_entity_type(r.type).user_scoped]
    private = [r for r in rows if get_entity_type(r.type).user_scoped]
    if private and user_id is None:
        logger.info("find_related skipped %d user-scoped record(s) from entity %s", len(private), entity.id)
    elif private:
        for type_name in sorted({r.type for r in private}):
            scope = SecureQuery.for_user(workspace_id, user_id, type_name)
            visible.extend(scope.filter_results(r for r in private if r.type == type_name).records)
    order = {eid: i for i, eid in enumerate(ids)}
    return sorted(visible, key=lambda r: order.get(r.id, len(order)))


def canonicalize_relationships(db: Session, workspace_id: Any = None) -> int:
    """Rewrite legacy map-form ``relationships`` into the array form.

    Returns the number of rows rewritten. Safe to re-run.
    """
    stmt = select(Entity).order_by(Entity.id)
    if workspace_id is not None:
        stmt = stmt.where(Entity.workspace_id == coerce_uuid(workspace_id, "workspace_id"))
    changed = 0
    for entity in db.scalars(stmt).all():
        if isinstance(entity.relationships, list):
            continue
        entity.relationships = serialize_relationships(normalize_relationships(entity.relationships))
        changed += 1
    if changed:
        _commit(db, "relationship migration")
    logger.info("Relationship migration rewrote %d entities to array form", changed)
    return changed
