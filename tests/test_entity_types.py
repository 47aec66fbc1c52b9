"""Tests for the entity type registry and payload validation."""

from __future__ import annotations

import pytest

from evergreen.entities.types import (
    EntityPayload,
    get_entity_type,
    is_user_scoped,
    mark_user_scoped,
    register_entity_type,
    registered_types,
    user_scoped_type_names,
    validate_payload,
)
from evergreen.errors import EntityValidationError


class TestRegistry:
    @pytest.mark.parametrize(
        "name",
        ["email", "email_account", "calendar_event", "calendar_account", "calendar_settings", "integration"],
    )
    def test_private_types_are_user_scoped(self, name: str) -> None:
        assert is_user_scoped(name)

    @pytest.mark.parametrize("name", ["contact", "company", "deal", "task", "project", "conversation", "message"])
    def test_collaborative_types_are_shared(self, name: str) -> None:
        assert not is_user_scoped(name)

    def test_lookup_is_case_insensitive(self) -> None:
        assert get_entity_type("  Email ").name == "email"

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(EntityValidationError, match="Unknown entity type"):
            get_entity_type("spaceship")

    @pytest.mark.parametrize("bad", ["", "   ", None, 3])
    def test_blank_type_rejected(self, bad) -> None:
        with pytest.raises(EntityValidationError):
            get_entity_type(bad)

    def test_register_new_shared_type(self) -> None:
        register_entity_type("Invoice", user_scoped=False)
        spec = get_entity_type("invoice")
        assert spec.user_scoped is False
        assert spec.schema is EntityPayload

    def test_cannot_make_user_scoped_type_shared(self) -> None:
        with pytest.raises(EntityValidationError, match="cannot be made shared"):
            register_entity_type("email", user_scoped=False)
        assert is_user_scoped("email")

    def test_shared_type_can_become_user_scoped(self) -> None:
        register_entity_type("note", user_scoped=True)
        assert is_user_scoped("note")

    def test_mark_user_scoped_adds_and_keeps_schema(self) -> None:
        deal_schema = get_entity_type("deal").schema
        mark_user_scoped(["sms", "deal"])
        assert is_user_scoped("sms")
        assert is_user_scoped("deal")
        assert get_entity_type("deal").schema is deal_schema

    def test_user_scoped_type_names_sorted(self) -> None:
        names = user_scoped_type_names()
        assert names == sorted(names)
        assert "email" in names and "contact" not in names

    def test_registered_types_cover_both_scopes(self) -> None:
        scopes = {s.user_scoped for s in registered_types()}
        assert scopes == {True, False}


class TestValidatePayload:
    def test_returns_payload_unchanged(self) -> None:
        data = {"name": "Acme deal", "value": 1200, "custom": {"nested": [1, 2]}}
        assert validate_payload("deal", data) == data

    def test_keeps_aliased_keys(self) -> None:
        data = {"subject": "Hi", "from": {"email": "a@b.example"}, "threadId": "t1"}
        assert validate_payload("email", data) == data

    def test_rejects_non_object(self) -> None:
        with pytest.raises(EntityValidationError, match="must be an object"):
            validate_payload("contact", ["not", "a", "dict"])

    def test_rejects_wrong_field_type(self) -> None:
        with pytest.raises(EntityValidationError, match="Invalid data"):
            validate_payload("deal", {"probability": 150})

    @pytest.mark.parametrize(
        ("entity_type", "data"),
        [
            ("deal", {"value": "12"}),
            ("task", {"archived": 1.0}),
            ("task", {"archived": "true"}),
            ("contact", {"name": 42}),
        ],
    )
    def test_declared_fields_are_not_coerced(self, entity_type, data) -> None:
        with pytest.raises(EntityValidationError, match="Invalid data"):
            validate_payload(entity_type, data)

    def test_rejects_bad_archived_flag(self) -> None:
        with pytest.raises(EntityValidationError):
            validate_payload("task", {"archived": {"yes": 1}})

    def test_rejects_non_json_values(self) -> None:
        with pytest.raises(EntityValidationError, match="JSON-serializable"):
            validate_payload("note", {"blob": object()})

    def test_unknown_type(self) -> None:
        with pytest.raises(EntityValidationError):
            validate_payload("spaceship", {})
