"""Pydantic schemas for request/response validation."""

from evergreen.schemas.entity import (
    EntityCreate,
    EntityList,
    EntityListParams,
    EntityRead,
    EntitySearchRequest,
    EntityUpdate,
)
from evergreen.schemas.identity import IdentityEvent, IdentityEventResult

__all__ = [
    "EntityCreate",
    "EntityList",
    "EntityListParams",
    "EntityRead",
    "EntitySearchRequest",
    "EntityUpdate",
    "IdentityEvent",
    "IdentityEventResult",
]
