"""Entity model: the polymorphic record behind contacts, deals, emails, events, etc.

``type`` selects the payload schema (see evergreen.entities.types). ``user_id`` is
required for user-scoped types and nullable for workspace-shared ones.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from evergreen.db.session import Base, JSONType


class Entity(Base):
    """One stored domain object, owned by a workspace and optionally a user."""

    __tablename__ = "entities"

    __table_args__ = (
        Index("idx_entities_workspace_type", "workspace_id", "type"),
        Index("idx_entities_workspace_user", "workspace_id", "user_id"),
        Index("idx_entities_data", "data", postgresql_using="gin"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    data: Mapped[dict] = mapped_column(JSONType, nullable=False)
    relationships: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    search_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def archived(self) -> bool:
        return bool((self.data or {}).get("archived", False))

    def __repr__(self) -> str:
        return f"<Entity {self.type} id={self.id} workspace={self.workspace_id} user={self.user_id}>"
