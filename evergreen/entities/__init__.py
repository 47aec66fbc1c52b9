"""Entity type registry and relationship helpers."""

from evergreen.entities.relationships import (
    RelationshipEdge,
    normalize_relationships,
    serialize_relationships,
)
from evergreen.entities.types import (
    EntityTypeSpec,
    get_entity_type,
    is_user_scoped,
    register_entity_type,
    validate_payload,
)

__all__ = [
    "EntityTypeSpec",
    "RelationshipEdge",
    "get_entity_type",
    "is_user_scoped",
    "normalize_relationships",
    "register_entity_type",
    "serialize_relationships",
    "validate_payload",
]
