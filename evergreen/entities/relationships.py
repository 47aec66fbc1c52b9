"""Relationship normalization.

Stored ``relationships`` come in two shapes:

- map form: ``{"company": "<id>", "contacts": ["<id>", "<id>"]}``
- array form: ``[{"type": "belongs_to", "targetId": "<id>", "targetType": "project"}]``,
  optionally with a per-edge ``"metadata"`` object

Readers go through ``normalize_relationships`` to get one canonical edge list.
Writers always store the array form produced by ``serialize_relationships``.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from evergreen.errors import EntityValidationError


@dataclass(frozen=True)
class RelationshipEdge:
    type: str
    target_id: str
    target_type: str | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "targetId": self.target_id}
        if self.target_type:
            out["targetType"] = self.target_type
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out


def normalize_relationships(value: Any) -> list[RelationshipEdge]:
    """Read either stored shape into a de-duplicated, order-preserving edge list."""
    if value is None:
        return []
    if isinstance(value, Mapping):
        edges = _edges_from_map(value)
    elif isinstance(value, (list, tuple)):
        edges = [_edge_from_item(item) for item in value]
    else:
        raise EntityValidationError(
            f"relationships must be an object or an array, got {type(value).__name__}"
        )
    return _dedupe(edges)


def serialize_relationships(edges: Iterable[RelationshipEdge]) -> list[dict[str, Any]]:
    return [edge.to_dict() for edge in _dedupe(edges)]


def add_edge(
    edges: list[RelationshipEdge], edge: RelationshipEdge
) -> tuple[list[RelationshipEdge], bool]:
    """Return (edges, changed). Edges compare on (type, target_id)."""
    if any(_key(e) == _key(edge) for e in edges):
        return edges, False
    return [*edges, edge], True


def remove_edge(
    edges: list[RelationshipEdge], rel_type: str, target_id: str
) -> tuple[list[RelationshipEdge], bool]:
    kept = [e for e in edges if _key(e) != (rel_type, str(target_id))]
    return kept, len(kept) != len(edges)


def target_ids(edges: Iterable[RelationshipEdge], rel_type: str | None = None) -> list[str]:
    seen: list[str] = []
    for edge in edges:
        if rel_type is not None and edge.type != rel_type:
            continue
        if edge.target_id not in seen:
            seen.append(edge.target_id)
    return seen


def _edges_from_map(value: Mapping) -> list[RelationshipEdge]:
    edges: list[RelationshipEdge] = []
    for rel_type, targets in value.items():
        if targets is None:
            continue
        if isinstance(targets, (list, tuple)):
            edges.extend(RelationshipEdge(str(rel_type), _target(t)) for t in targets)
        else:
            edges.append(RelationshipEdge(str(rel_type), _target(targets)))
    return edges


def _edge_from_item(item: Any) -> RelationshipEdge:
    if not isinstance(item, Mapping):
        raise EntityValidationError("relationship edges must be objects with type and targetId")
    rel_type = item.get("type")
    target = item.get("targetId", item.get("target_id"))
    if not rel_type or target is None:
        raise EntityValidationError("relationship edge is missing 'type' or 'targetId'")
    target_type = item.get("targetType", item.get("target_type"))
    metadata = item.get("metadata")
    if metadata is not None and not isinstance(metadata, Mapping):
        raise EntityValidationError("relationship edge metadata must be an object")
    return RelationshipEdge(
        str(rel_type),
        _target(target),
        str(target_type) if target_type else None,
        dict(metadata) if metadata else None,
    )


def _target(value: Any) -> str:
    if isinstance(value, (str, int, uuid.UUID)) and not isinstance(value, bool):
        text = str(value).strip()
        if text:
            return text
    raise EntityValidationError(f"Invalid relationship target: {value!r}")


def _key(edge: RelationshipEdge) -> tuple[str, str]:
    return edge.type, edge.target_id


def _dedupe(edges: Iterable[RelationshipEdge]) -> list[RelationshipEdge]:
    out: list[RelationshipEdge] = []
    seen: set[tuple[str, str]] = set()
    for edge in edges:
        if _key(edge) in seen:
            continue
        seen.add(_key(edge))
        out.append(edge)
    return out
