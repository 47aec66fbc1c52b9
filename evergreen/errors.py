"""Error taxonomy for the entity store.

NotFoundError is the only class call sites are expected to handle gracefully.
EntityValidationError and IsolationViolation must always propagate.
"""

from __future__ import annotations

from typing import Any


class EvergreenError(Exception):
    """Base class for all evergreenOS core errors."""


class NotFoundError(EvergreenError):
    """A workspace, user or entity is absent for the given key."""


class WorkspaceNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class EntityNotFoundError(NotFoundError):
    pass


class EntityValidationError(ValueError, EvergreenError):
    """Caller contract violation: missing owner, unknown type, malformed payload."""

    pass


class IsolationViolation(EvergreenError):
    """A record's owner does not match the requesting security context.

    ``expected`` and ``actual`` are ``(workspace_id, user_id)`` pairs.
    """

    def __init__(self, message: str, *, expected: tuple[Any, Any], actual: tuple[Any, Any]) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class StoreError(EvergreenError):
    """The persistence layer failed (connectivity, unexpected constraint violation)."""
