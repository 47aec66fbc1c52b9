"""Initial schema: workspaces, users, entities.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the tenant table, users keyed by the identity-provider user id, and the
unified entities table with its workspace/type and workspace/user indexes.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("external_org_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("settings", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uq_workspaces_slug"),
    )
    op.create_index(
        "ix_workspaces_external_org_id", "workspaces", ["external_org_id"], unique=True
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("external_user_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("role", sa.String(50), nullable=False, server_default="member"),
        sa.Column("settings", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["workspace_id"],
            ["workspaces.id"],
            name="fk_users_workspace_id",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_users_external_user_id", "users", ["external_user_id"], unique=True)
    op.create_index("ix_users_workspace_id", "users", ["workspace_id"])

    op.create_table(
        "entities",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("data", JSONType, nullable=False),
        sa.Column("relationships", JSONType, nullable=False),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("search_text", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["workspace_id"],
            ["workspaces.id"],
            name="fk_entities_workspace_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_entities_user_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_entities_workspace_id", "entities", ["workspace_id"])
    op.create_index("ix_entities_user_id", "entities", ["user_id"])
    op.create_index("ix_entities_type", "entities", ["type"])
    op.create_index("ix_entities_created_at", "entities", ["created_at"])
    op.create_index("idx_entities_workspace_type", "entities", ["workspace_id", "type"])
    op.create_index("idx_entities_workspace_user", "entities", ["workspace_id", "user_id"])
    if op.get_bind().dialect.name == "postgresql":
        op.create_index(
            "idx_entities_data", "entities", ["data"], postgresql_using="gin"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.drop_index("idx_entities_data", table_name="entities")
    op.drop_index("idx_entities_workspace_user", table_name="entities")
    op.drop_index("idx_entities_workspace_type", table_name="entities")
    op.drop_index("ix_entities_created_at", table_name="entities")
    op.drop_index("ix_entities_type", table_name="entities")
    op.drop_index("ix_entities_user_id", table_name="entities")
    op.drop_index("ix_entities_workspace_id", table_name="entities")
    op.drop_table("entities")
    op.drop_index("ix_users_workspace_id", table_name="users")
    op.drop_index("ix_users_external_user_id", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_workspaces_external_org_id", table_name="workspaces")
    op.drop_table("workspaces")
