"""Identity resolver: external (organization, user) ids to internal workspace/user rows.

Workspaces are created lazily on first reference. Users are created only from
identity-provider events (membership / user created), never from a bare lookup.

Create-if-absent paths run the INSERT inside a savepoint. A uniqueness failure means
a concurrent request created the row first: the savepoint is rolled back and the
existing row is re-fetched instead of failing the request.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from evergreen.errors import (
    EntityValidationError,
    StoreError,
    UserNotFoundError,
    WorkspaceNotFoundError,
)
from evergreen.models.user import User, UserRole
from evergreen.models.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Identity-resolved context for one request."""

    workspace_id: uuid.UUID
    user_id: uuid.UUID
    role: str = UserRole.MEMBER.value
    external_org_id: str | None = None
    external_user_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


@dataclass(frozen=True)
class UserProfile:
    """Identity fields delivered by user.created / user.updated events."""

    external_user_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None


def slug_for_org(external_org_id: str) -> str:
    """Deterministic slug: lowercase, every non [a-z0-9] character replaced by '-'."""
    return re.sub(r"[^a-z0-9]", "-", external_org_id.lower())


def _require_external_id(value: str | None, field: str) -> str:
    if not value or not value.strip():
        raise EntityValidationError(f"{field} is required")
    return value.strip()


def _find_workspace(db: Session, external_org_id: str) -> Workspace | None:
    return db.query(Workspace).filter(Workspace.external_org_id == external_org_id).first()


def _find_user(db: Session, external_user_id: str) -> User | None:
    return db.query(User).filter(User.external_user_id == external_user_id).first()


def get_workspace_id(db: Session, external_org_id: str) -> uuid.UUID:
    """Look up the workspace for an external org id.

    Absence and lookup failures both raise WorkspaceNotFoundError.
    """
    external_org_id = _require_external_id(external_org_id, "external_org_id")
    try:
        workspace = _find_workspace(db, external_org_id)
    except SQLAlchemyError as exc:
        logger.exception("Workspace lookup failed for org=%s", external_org_id)
        db.rollback()
        raise WorkspaceNotFoundError(f"Workspace not found for org {external_org_id}") from exc
    if workspace is None:
        raise WorkspaceNotFoundError(f"Workspace not found for org {external_org_id}")
    return workspace.id


def resolve_workspace(db: Session, external_org_id: str, fallback_name: str | None = None) -> uuid.UUID:
    """Return the workspace id for an org, creating the workspace if absent.

    Safe under concurrent first calls: at most one row is created per org id and
    every caller gets the same id back.
    """
    external_org_id = _require_external_id(external_org_id, "external_org_id")
    try:
        existing = _find_workspace(db, external_org_id)
    except SQLAlchemyError as exc:
        logger.exception("Workspace lookup failed for org=%s", external_org_id)
        db.rollback()
        raise WorkspaceNotFoundError(f"Workspace not found for org {external_org_id}") from exc
    if existing is not None:
        return existing.id

    name = (fallback_name or "").strip() or external_org_id
    slug = slug_for_org(external_org_id)
    created = _insert_workspace(db, external_org_id, name, slug)
    if created is not None:
        db.commit()
        logger.info("Workspace created: org=%s id=%s slug=%s", external_org_id, created.id, slug)
        return created.id

    # Lost the race, or the slug is already taken by a different org
    existing = _find_workspace(db, external_org_id)
    if existing is not None:
        logger.info("Workspace for org=%s created concurrently; using id=%s", external_org_id, existing.id)
        return existing.id

    suffixed = f"{slug}-{uuid.uuid4().hex[:8]}"
    created = _insert_workspace(db, external_org_id, name, suffixed)
    if created is None:
        existing = _find_workspace(db, external_org_id)
        if existing is None:
            raise StoreError(f"Could not create workspace for org {external_org_id}")
        return existing.id
    db.commit()
    logger.warning(
        "Workspace slug '%s' already taken; created org=%s with slug '%s'",
        slug,
        external_org_id,
        suffixed,
    )
    return created.id


def _insert_workspace(db: Session, external_org_id: str, name: str, slug: str) -> Workspace | None:
    """INSERT inside a savepoint; None when a uniqueness constraint fired."""
    workspace = Workspace(external_org_id=external_org_id, name=name, slug=slug, settings={})
    try:
        with db.begin_nested():
            db.add(workspace)
    except IntegrityError:
        logger.info("Workspace insert conflict for org=%s slug=%s", external_org_id, slug)
        return None
    except SQLAlchemyError as exc:
        logger.exception("Workspace insert failed for org=%s", external_org_id)
        db.rollback()
        raise StoreError(f"Could not create workspace for org {external_org_id}") from exc
    return workspace


def resolve_user(db: Session, external_user_id: str) -> uuid.UUID:
    """Look up the internal user id. Never creates a user."""
    return get_user(db, external_user_id).id


def get_user(db: Session, external_user_id: str) -> User:
    external_user_id = _require_external_id(external_user_id, "external_user_id")
    try:
        user = _find_user(db, external_user_id)
    except SQLAlchemyError as exc:
        logger.exception("User lookup failed for external user=%s", external_user_id)
        db.rollback()
        raise UserNotFoundError(f"User not found: {external_user_id}") from exc
    if user is None:
        raise UserNotFoundError(f"User not found: {external_user_id}")
    return user


def link_user_to_workspace(
    db: Session,
    external_user_id: str,
    workspace_id: uuid.UUID,
    *,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    image_url: str | None = None,
    role: str | None = None,
) -> User:
    """Point a user at a workspace (idempotent). Creates a minimal user if absent."""
    external_user_id = _require_external_id(external_user_id, "external_user_id")
    if role is not None and role not in {r.value for r in UserRole}:
        raise EntityValidationError(f"Invalid role: {role!r}")
    if db.get(Workspace, workspace_id) is None:
        raise WorkspaceNotFoundError(f"Workspace not found: {workspace_id}")

    user = _find_user(db, external_user_id)
    if user is None:
        user = _insert_user(
            db,
            User(
                external_user_id=external_user_id,
                email=email or "",
                first_name=first_name,
                last_name=last_name,
                image_url=image_url,
                workspace_id=workspace_id,
                role=role or UserRole.MEMBER.value,
                settings={},
            ),
        )
        if user is not None:
            db.commit()
            db.refresh(user)
            logger.info("User created from membership: external=%s workspace=%s", external_user_id, workspace_id)
            return user
        user = _find_user(db, external_user_id)
        if user is None:
            raise StoreError(f"Could not create user {external_user_id}")

    changed = False
    if user.workspace_id != workspace_id:
        logger.info(
            "Linking user external=%s to workspace %s (was %s)",
            external_user_id,
            workspace_id,
            user.workspace_id,
        )
        user.workspace_id = workspace_id
        changed = True
    if role is not None and user.role != role:
        user.role = role
        changed = True
    if email and not user.email:
        user.email = email
        changed = True
    if changed:
        db.commit()
        db.refresh(user)
    return user


def unlink_user_from_workspace(db: Session, external_user_id: str, workspace_id: uuid.UUID) -> bool:
    """Clear the user's workspace pointer if it still points at ``workspace_id``."""
    user = _find_user(db, _require_external_id(external_user_id, "external_user_id"))
    if user is None or user.workspace_id != workspace_id:
        return False
    user.workspace_id = None
    db.commit()
    logger.info("User external=%s unlinked from workspace %s", external_user_id, workspace_id)
    return True


def upsert_user(db: Session, profile: UserProfile) -> User:
    """Create or update a user from identity-provider profile fields."""
    external_user_id = _require_external_id(profile.external_user_id, "external_user_id")
    user = _find_user(db, external_user_id)
    if user is None:
        user = _insert_user(
            db,
            User(
                external_user_id=external_user_id,
                email=profile.email or "",
                first_name=profile.first_name,
                last_name=profile.last_name,
                image_url=profile.image_url,
                role=UserRole.MEMBER.value,
                settings={},
            ),
        )
        if user is not None:
            db.commit()
            db.refresh(user)
            return user
        user = _find_user(db, external_user_id)
        if user is None:
            raise StoreError(f"Could not create user {external_user_id}")

    if profile.email is not None:
        user.email = profile.email
    if profile.first_name is not None:
        user.first_name = profile.first_name
    if profile.last_name is not None:
        user.last_name = profile.last_name
    if profile.image_url is not None:
        user.image_url = profile.image_url
    db.commit()
    db.refresh(user)
    return user


def _insert_user(db: Session, user: User) -> User | None:
    try:
        with db.begin_nested():
            db.add(user)
    except IntegrityError:
        logger.info("User insert conflict for external=%s", user.external_user_id)
        return None
    except SQLAlchemyError as exc:
        logger.exception("User insert failed for external=%s", user.external_user_id)
        db.rollback()
        raise StoreError(f"Could not create user {user.external_user_id}") from exc
    return user


def resolve_request_context(db: Session, external_org_id: str, external_user_id: str) -> RequestContext:
    """Resolve both ids for a request. The user must be linked to that workspace."""
    workspace_id = resolve_workspace(db, external_org_id)
    user = get_user(db, external_user_id)
    if user.workspace_id != workspace_id:
        logger.warning(
            "User external=%s is not a member of org=%s (linked workspace=%s)",
            external_user_id,
            external_org_id,
            user.workspace_id,
        )
        raise UserNotFoundError(f"User {external_user_id} not found in organization {external_org_id}")
    return RequestContext(
        workspace_id=workspace_id,
        user_id=user.id,
        role=user.role,
        external_org_id=external_org_id,
        external_user_id=external_user_id,
    )
