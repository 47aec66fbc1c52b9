"""Secure query layer for entities.

Every read or write of a user-scoped entity type goes through ``SecureQuery``, built
from a fixed (workspace_id, user_id, type) triple. The three conditions are always
applied first and extra conditions are ANDed after them, so callers can only narrow
the result set, never widen it.

Shared types use ``WorkspaceQuery``, which refuses user-scoped types. There is no
query object that reads a user-scoped type without a user id.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, NamedTuple

from sqlalchemy import Select, Update, select, update
from sqlalchemy.sql import ColumnElement

from evergreen.entities.types import get_entity_type
from evergreen.errors import EntityNotFoundError, EntityValidationError, IsolationViolation
from evergreen.models.entity import Entity

logger = logging.getLogger(__name__)


def coerce_uuid(value: Any, field: str) -> uuid.UUID:
    """Return value as UUID or raise EntityValidationError."""
    if isinstance(value, uuid.UUID):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        raise EntityValidationError(f"{field} is required")
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, TypeError, AttributeError):
        raise EntityValidationError(f"Invalid {field}: must be a valid UUID") from None


@dataclass(frozen=True)
class SecurityContext:
    """The (workspace, user, type) triple that scopes a user-owned query."""

    workspace_id: uuid.UUID
    user_id: uuid.UUID
    type: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "workspace_id", coerce_uuid(self.workspace_id, "workspace_id"))
        object.__setattr__(self, "user_id", coerce_uuid(self.user_id, "user_id"))
        object.__setattr__(self, "type", get_entity_type(self.type).name)


class FilteredResults(NamedTuple):
    records: list[Entity]
    dropped: int


class SecureQuery:
    """Query builder bound to one immutable SecurityContext."""

    __slots__ = ("_context", "_conditions")

    def __init__(self, context: SecurityContext) -> None:
        if not isinstance(context, SecurityContext):
            raise EntityValidationError("SecureQuery requires a SecurityContext")
        self._context = context
        self._conditions: tuple[ColumnElement[bool], ...] = (
            Entity.workspace_id == context.workspace_id,
            Entity.type == context.type,
            Entity.user_id == context.user_id,
        )

    @classmethod
    def for_user(cls, workspace_id: Any, user_id: Any, entity_type: str) -> SecureQuery:
        return cls(SecurityContext(workspace_id, user_id, entity_type))

    @property
    def context(self) -> SecurityContext:
        return self._context

    @property
    def conditions(self) -> tuple[ColumnElement[bool], ...]:
        return self._conditions

    def base_query(self) -> Select[tuple[Entity]]:
        """All entities matching the triple exactly."""
        return select(Entity).where(*self._conditions)

    def where(self, *conditions: ColumnElement[bool]) -> Select[tuple[Entity]]:
        """Mandatory triple first, caller conditions after (AND)."""
        return select(Entity).where(*self._conditions, *conditions)

    def update_statement(
        self, *conditions: ColumnElement[bool], values: dict[str, Any]
    ) -> Update:
        """Scoped UPDATE; owner columns cannot be reassigned through it."""
        forbidden = {"workspace_id", "user_id", "type", "id"} & set(values)
        if forbidden:
            raise EntityValidationError(
                f"Cannot change {', '.join(sorted(forbidden))} through a scoped update"
            )
        return update(Entity).where(*self._conditions, *conditions).values(**values)

    def owns(self, record: Any) -> bool:
        return (
            getattr(record, "user_id", None) == self._context.user_id
            and getattr(record, "workspace_id", None) == self._context.workspace_id
        )

    def verify_result(self, record: Entity | None) -> Entity:
        """Raise IsolationViolation unless the record belongs to this context.

        Use after any fetch by primary key alone. A missing record raises
        EntityNotFoundError, which callers can tell apart from a violation.
        """
        if record is None:
            raise EntityNotFoundError("Entity not found")
        if self.owns(record):
            return record

        expected = (self._context.workspace_id, self._context.user_id)
        actual = (getattr(record, "workspace_id", None), getattr(record, "user_id", None))
        if actual[0] != expected[0]:
            message = "Isolation violation: record belongs to another workspace"
        else:
            message = "Isolation violation: record belongs to another user"
        logger.critical(
            "SECURITY VIOLATION: %s (record=%s type=%s expected workspace=%s user=%s, "
            "got workspace=%s user=%s)",
            message,
            getattr(record, "id", None),
            self._context.type,
            expected[0],
            expected[1],
            actual[0],
            actual[1],
        )
        raise IsolationViolation(message, expected=expected, actual=actual)

    def filter_results(self, records: Iterable[Entity]) -> FilteredResults:
        """Drop records not owned by this context and report how many were dropped."""
        records = list(records)
        safe = [r for r in records if self.owns(r)]
        dropped = len(records) - len(safe)
        if dropped:
            logger.error(
                "SECURITY WARNING: filtered out %d record(s) not owned by user=%s workspace=%s",
                dropped,
                self._context.user_id,
                self._context.workspace_id,
            )
        return FilteredResults(safe, dropped)

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_conditions"):
            raise AttributeError("SecureQuery is immutable")
        object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        c = self._context
        return f"SecureQuery(workspace_id={c.workspace_id}, user_id={c.user_id}, type={c.type!r})"


class WorkspaceQuery:
    """Workspace-only scope for shared entity types (deal, company, ...)."""

    __slots__ = ("workspace_id", "type", "_conditions")

    def __init__(self, workspace_id: Any, entity_type: str) -> None:
        spec = get_entity_type(entity_type)
        if spec.user_scoped:
            raise EntityValidationError(
                f"user_id is required to query user-scoped entity type '{spec.name}'"
            )
        self.workspace_id = coerce_uuid(workspace_id, "workspace_id")
        self.type = spec.name
        self._conditions = (
            Entity.workspace_id == self.workspace_id,
            Entity.type == self.type,
        )

    @property
    def conditions(self) -> tuple[ColumnElement[bool], ...]:
        return self._conditions

    def base_query(self) -> Select[tuple[Entity]]:
        return select(Entity).where(*self._conditions)

    def where(self, *conditions: ColumnElement[bool]) -> Select[tuple[Entity]]:
        return select(Entity).where(*self._conditions, *conditions)

    def update_statement(
        self, *conditions: ColumnElement[bool], values: dict[str, Any]
    ) -> Update:
        forbidden = {"workspace_id", "type", "id"} & set(values)
        if forbidden:
            raise EntityValidationError(
                f"Cannot change {', '.join(sorted(forbidden))} through a scoped update"
            )
        return update(Entity).where(*self._conditions, *conditions).values(**values)

    def filter_results(self, records: Iterable[Entity]) -> FilteredResults:
        records = list(records)
        safe = [r for r in records if r.workspace_id == self.workspace_id]
        dropped = len(records) - len(safe)
        if dropped:
            logger.error(
                "SECURITY WARNING: filtered out %d record(s) outside workspace=%s",
                dropped,
                self.workspace_id,
            )
        return FilteredResults(safe, dropped)


def scoped_query(
    workspace_id: Any, entity_type: str, user_id: Any = None
) -> SecureQuery | WorkspaceQuery:
    """Pick the query scope for a type.

    With a user id, always the full triple. Without one, only shared types are
    allowed; a user-scoped type raises EntityValidationError.
    """
    if user_id is not None:
        return SecureQuery.for_user(workspace_id, user_id, entity_type)
    return WorkspaceQuery(workspace_id, entity_type)

