"""Entity schemas for request/response validation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from evergreen.entities.relationships import normalize_relationships, serialize_relationships


class EntityCreate(BaseModel):
    """Schema for creating an entity; the owner comes from the request context."""

    data: dict[str, Any]
    relationships: dict[str, Any] | list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None


class EntityUpdate(BaseModel):
    """Schema for updating an entity (merge by default)."""

    data: dict[str, Any] | None = None
    relationships: dict[str, Any] | list[dict[str, Any]] | None = None
    metadata: dict[str, Any] | None = None
    replace: bool = False


class EntitySearchRequest(BaseModel):
    match: dict[str, str | int | float | bool | None] = Field(..., min_length=1)
    limit: int | None = Field(None, gt=0)


class EntityListParams(BaseModel):
    limit: int | None = Field(None, gt=0)
    offset: int | None = Field(None, ge=0)
    order_by: Literal["created_at", "updated_at"] = "created_at"
    order_direction: Literal["asc", "desc"] = "desc"
    search: str | None = Field(None, max_length=200)
    include_archived: bool = False
    related_type: str | None = Field(None, min_length=1, max_length=100)
    related_id: str | None = Field(None, min_length=1, max_length=200)

    @model_validator(mode="after")
    def _related_pair(self) -> EntityListParams:
        if (self.related_type is None) != (self.related_id is None):
            raise ValueError("related_type and related_id must be given together")
        return self

    @property
    def related_to(self) -> dict[str, str] | None:
        if self.related_type is None or self.related_id is None:
            return None
        return {self.related_type: self.related_id}


class EntityRead(BaseModel):
    """Entity as returned to callers; relationships always in the canonical array form."""

    id: uuid.UUID
    workspace_id: uuid.UUID
    user_id: uuid.UUID | None
    type: str
    data: dict[str, Any]
    relationships: list[dict[str, Any]]
    metadata: dict[str, Any] = Field(validation_alias="meta")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @field_validator("relationships", mode="before")
    @classmethod
    def _canonical_relationships(cls, value: Any) -> list[dict[str, Any]]:
        return serialize_relationships(normalize_relationships(value))


class EntityList(BaseModel):
    items: list[EntityRead]
    total: int
