"""Tests for relationship normalization (map form and array form)."""

from __future__ import annotations

import uuid

import pytest

from evergreen.entities.relationships import (
    RelationshipEdge,
    add_edge,
    normalize_relationships,
    remove_edge,
    serialize_relationships,
    target_ids,
)
from evergreen.errors import EntityValidationError


class TestNormalize:
    def test_none_is_empty(self) -> None:
        assert normalize_relationships(None) == []

    def test_map_form(self) -> None:
        edges = normalize_relationships({"company": "c1", "contacts": ["p1", "p2"], "owner": None})
        assert edges == [
            RelationshipEdge("company", "c1"),
            RelationshipEdge("contacts", "p1"),
            RelationshipEdge("contacts", "p2"),
        ]

    def test_array_form(self) -> None:
        edges = normalize_relationships(
            [
                {"type": "belongs_to", "targetId": "p1", "targetType": "project"},
                {"type": "mentions", "target_id": "c9"},
            ]
        )
        assert edges == [
            RelationshipEdge("belongs_to", "p1", "project"),
            RelationshipEdge("mentions", "c9"),
        ]

    def test_both_forms_agree(self) -> None:
        from_map = normalize_relationships({"company": "c1"})
        from_array = normalize_relationships([{"type": "company", "targetId": "c1"}])
        assert from_map == from_array

    def test_duplicates_removed_order_kept(self) -> None:
        edges = normalize_relationships(
            [
                {"type": "a", "targetId": "2"},
                {"type": "a", "targetId": "1"},
                {"type": "a", "targetId": "2", "targetType": "x"},
            ]
        )
        assert [e.target_id for e in edges] == ["2", "1"]

    def test_uuid_and_int_targets(self) -> None:
        tid = uuid.uuid4()
        edges = normalize_relationships({"company": tid, "legacy": 7})
        assert [e.target_id for e in edges] == [str(tid), "7"]

    @pytest.mark.parametrize(
        "value",
        [
            "company:c1",
            42,
            [{"type": "a"}],
            [{"targetId": "x"}],
            ["not-an-object"],
            {"company": True},
            {"company": "  "},
        ],
    )
    def test_malformed_rejected(self, value) -> None:
        with pytest.raises(EntityValidationError):
            normalize_relationships(value)


class TestSerializeAndEdit:
    def test_serialize_is_array_form(self) -> None:
        out = serialize_relationships(normalize_relationships({"company": "c1"}))
        assert out == [{"type": "company", "targetId": "c1"}]

    def test_serialize_includes_target_type_when_known(self) -> None:
        out = serialize_relationships([RelationshipEdge("deal", "d1", "deal")])
        assert out == [{"type": "deal", "targetId": "d1", "targetType": "deal"}]

    def test_edge_metadata_round_trip(self) -> None:
        stored = [
            {"type": "belongs_to", "targetId": "p1", "metadata": {"relationshipType": "project"}},
            {"type": "mentions", "targetId": "c9"},
        ]
        assert serialize_relationships(normalize_relationships(stored)) == stored

    def test_edge_metadata_ignored_for_identity(self) -> None:
        edges = normalize_relationships(
            [
                {"type": "a", "targetId": "1", "metadata": {"note": "first"}},
                {"type": "a", "targetId": "1", "metadata": {"note": "second"}},
            ]
        )
        assert len(edges) == 1
        assert edges[0].metadata == {"note": "first"}
        assert edges[0] == RelationshipEdge("a", "1")

    def test_edge_metadata_must_be_object(self) -> None:
        with pytest.raises(EntityValidationError):
            normalize_relationships([{"type": "a", "targetId": "1", "metadata": "x"}])

    def test_add_edge_idempotent(self) -> None:
        edges, changed = add_edge([], RelationshipEdge("company", "c1"))
        assert changed
        edges, changed = add_edge(edges, RelationshipEdge("company", "c1", "company"))
        assert not changed
        assert len(edges) == 1

    def test_remove_edge(self) -> None:
        edges = normalize_relationships({"company": "c1", "contacts": ["p1"]})
        kept, changed = remove_edge(edges, "company", "c1")
        assert changed
        assert kept == [RelationshipEdge("contacts", "p1")]
        _, changed = remove_edge(kept, "company", "c1")
        assert not changed

    def test_target_ids_filter(self) -> None:
        edges = normalize_relationships({"company": "c1", "contacts": ["p1", "p2"]})
        assert target_ids(edges) == ["c1", "p1", "p2"]
        assert target_ids(edges, "contacts") == ["p1", "p2"]
