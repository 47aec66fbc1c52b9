"""Entity type registry.

Every ``Entity.type`` maps to an ``EntityTypeSpec``: whether records of the type are
private to their owning user, and a pydantic schema for the known ``data`` fields.
Schemas allow extra keys so new fields need no migration; the declared fields are
still type-checked at the store boundary.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from evergreen.errors import EntityValidationError

logger = logging.getLogger(__name__)


class EntityPayload(BaseModel):
    """Base payload: any extra keys are kept as-is.

    Strict: the payload is stored as given, so declared fields must already
    carry their declared JSON type ("12" is not a float, 1.0 is not a bool).
    """

    model_config = ConfigDict(extra="allow", strict=True)

    archived: bool | None = None


# ── Workspace-shared payloads ───────────────────────────────────────


class ContactData(EntityPayload):
    name: str | None = None
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    tags: list[str] | None = None


class CompanyData(EntityPayload):
    name: str | None = None
    domain: str | None = None
    industry: str | None = None


class DealData(EntityPayload):
    name: str | None = None
    stage: str | None = None
    value: float | None = None
    probability: float | None = Field(None, ge=0, le=100)


class TaskData(EntityPayload):
    title: str | None = None
    status: str | None = None
    priority: str | None = None
    due_date: str | None = Field(None, alias="dueDate")


class ConversationData(EntityPayload):
    title: str | None = None
    participants: list[str] | None = None


class MessageData(EntityPayload):
    content: str | None = None
    channel: str | None = None
    conversation_id: str | None = Field(None, alias="conversationId")


class InvitationData(EntityPayload):
    email: str | None = None
    role: str | None = None
    status: str | None = None


# ── User-scoped payloads ────────────────────────────────────────────


class EmailData(EntityPayload):
    subject: str | None = None
    from_: Any = Field(None, alias="from")
    to: Any = None
    body: str | None = None
    thread_id: str | None = Field(None, alias="threadId")
    external_id: str | None = Field(None, alias="externalId")
    labels: list[str] | None = None


class AccountData(EntityPayload):
    """email_account / calendar_account: OAuth connection for one provider account."""

    email: str | None = None
    provider: str | None = None
    connected: bool | None = None
    tokens: dict[str, Any] | None = None


class CalendarEventData(EntityPayload):
    title: str | None = None
    start_time: str | None = Field(None, alias="startTime")
    end_time: str | None = Field(None, alias="endTime")
    external_id: str | None = Field(None, alias="externalId")
    attendees: list[Any] | None = None


class IntegrationData(EntityPayload):
    provider: str | None = None
    connected: bool | None = None


@dataclass(frozen=True)
class EntityTypeSpec:
    name: str
    user_scoped: bool
    schema: type[EntityPayload] = EntityPayload


_REGISTRY: dict[str, EntityTypeSpec] = {}


def register_entity_type(
    name: str,
    *,
    user_scoped: bool,
    schema: type[EntityPayload] | None = None,
) -> EntityTypeSpec:
    """Register (or replace) an entity type.

    Re-registering a user-scoped type as shared is refused: it would widen
    visibility of records already stored as private.
    """
    key = _normalize_name(name)
    existing = _REGISTRY.get(key)
    if existing is not None and existing.user_scoped and not user_scoped:
        raise EntityValidationError(f"Entity type '{key}' is user-scoped and cannot be made shared")
    spec = EntityTypeSpec(name=key, user_scoped=user_scoped, schema=schema or EntityPayload)
    _REGISTRY[key] = spec
    return spec


def get_entity_type(name: str) -> EntityTypeSpec:
    """Return the spec for a registered type; unknown types are a caller error."""
    key = _normalize_name(name)
    spec = _REGISTRY.get(key)
    if spec is None:
        raise EntityValidationError(f"Unknown entity type: {name!r}")
    return spec


def is_user_scoped(name: str) -> bool:
    return get_entity_type(name).user_scoped


def registered_types() -> list[EntityTypeSpec]:
    return sorted(_REGISTRY.values(), key=lambda s: s.name)


def user_scoped_type_names() -> list[str]:
    return [s.name for s in registered_types() if s.user_scoped]


def mark_user_scoped(names: Iterable[str]) -> None:
    """Classify extra types as user-scoped (from settings.user_scoped_types)."""
    for name in names:
        key = _normalize_name(name)
        current = _REGISTRY.get(key)
        schema = current.schema if current is not None else EntityPayload
        _REGISTRY[key] = EntityTypeSpec(name=key, user_scoped=True, schema=schema)
        logger.info("Entity type '%s' classified as user-scoped", key)


def validate_payload(entity_type: str, data: Any) -> dict[str, Any]:
    """Validate ``data`` against the type schema and return the payload to store.

    Declared fields are type-checked; the returned dict keeps the caller's keys
    (aliases included) and any extra keys untouched.
    """
    spec = get_entity_type(entity_type)
    if not isinstance(data, Mapping):
        raise EntityValidationError(
            f"Entity data for type '{spec.name}' must be an object, got {type(data).__name__}"
        )
    try:
        spec.schema.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise EntityValidationError(
            f"Invalid data for entity type '{spec.name}': {exc.errors(include_url=False)}"
        ) from exc
    payload = dict(data)
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as exc:
        raise EntityValidationError(
            f"Entity data for type '{spec.name}' is not JSON-serializable: {exc}"
        ) from exc
    return payload


def _normalize_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise EntityValidationError("Entity type must be a non-empty string")
    return name.strip().lower()


for _name, _schema in (
    ("contact", ContactData),
    ("company", CompanyData),
    ("deal", DealData),
    ("task", TaskData),
    ("project", EntityPayload),
    ("conversation", ConversationData),
    ("message", MessageData),
    ("invitation", InvitationData),
    ("activity", EntityPayload),
    ("note", EntityPayload),
):
    register_entity_type(_name, user_scoped=False, schema=_schema)

for _name, _schema in (
    ("email", EmailData),
    ("email_account", AccountData),
    ("calendar_event", CalendarEventData),
    ("calendar_account", AccountData),
    ("calendar_settings", EntityPayload),
    ("integration", IntegrationData),
):
    register_entity_type(_name, user_scoped=True, schema=_schema)
