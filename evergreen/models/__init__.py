"""SQLAlchemy models."""

from evergreen.models.entity import Entity
from evergreen.models.user import User, UserRole
from evergreen.models.workspace import Workspace

__all__ = [
    "Entity",
    "User",
    "UserRole",
    "Workspace",
]
