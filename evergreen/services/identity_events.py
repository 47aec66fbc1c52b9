"""Identity-provider event handling.

Keeps workspaces and users in step with the provider: organizations become
workspaces, user events create/update user rows, membership events (re)link a
user's workspace pointer.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from evergreen.errors import EntityValidationError
from evergreen.models.user import UserRole
from evergreen.models.workspace import Workspace
from evergreen.schemas.identity import (
    IdentityEvent,
    IdentityEventResult,
    MembershipData,
    OrganizationData,
    UserData,
)
from evergreen.services.identity_resolver import (
    UserProfile,
    link_user_to_workspace,
    resolve_workspace,
    unlink_user_from_workspace,
    upsert_user,
)

logger = logging.getLogger(__name__)


def role_from_provider(role: str | None) -> str:
    """Map provider roles ("org:admin", "admin", "org:member") to UserRole values."""
    if role and role.split(":")[-1].lower() == UserRole.ADMIN.value:
        return UserRole.ADMIN.value
    return UserRole.MEMBER.value


def _parse(model, event: IdentityEvent):
    try:
        return model.model_validate(event.data)
    except PydanticValidationError as exc:
        raise EntityValidationError(f"Malformed {event.type} event: {exc.errors(include_url=False)}") from exc


def _organization_created(db: Session, event: IdentityEvent) -> IdentityEventResult:
    org = _parse(OrganizationData, event)
    workspace_id = resolve_workspace(db, org.id, org.name)
    return IdentityEventResult(type=event.type, handled=True, workspace_id=str(workspace_id))


def _organization_updated(db: Session, event: IdentityEvent) -> IdentityEventResult:
    org = _parse(OrganizationData, event)
    workspace_id = resolve_workspace(db, org.id, org.name)
    workspace = db.get(Workspace, workspace_id)
    if org.name and workspace is not None and workspace.name != org.name:
        workspace.name = org.name
        db.commit()
    return IdentityEventResult(type=event.type, handled=True, workspace_id=str(workspace_id))


def _user_upserted(db: Session, event: IdentityEvent) -> IdentityEventResult:
    data = _parse(UserData, event)
    user = upsert_user(
        db,
        UserProfile(
            external_user_id=data.id,
            email=data.primary_email,
            first_name=data.first_name,
            last_name=data.last_name,
            image_url=data.image_url,
        ),
    )
    return IdentityEventResult(
        type=event.type,
        handled=True,
        user_id=str(user.id),
        workspace_id=str(user.workspace_id) if user.workspace_id else None,
    )


def _membership_created(db: Session, event: IdentityEvent) -> IdentityEventResult:
    data = _parse(MembershipData, event)
    workspace_id = resolve_workspace(db, data.organization.id, data.organization.name)
    member = data.public_user_data
    user = link_user_to_workspace(
        db,
        member.user_id,
        workspace_id,
        email=member.identifier,
        first_name=member.first_name,
        last_name=member.last_name,
        image_url=member.image_url,
        role=role_from_provider(data.role),
    )
    return IdentityEventResult(
        type=event.type, handled=True, workspace_id=str(workspace_id), user_id=str(user.id)
    )


def _membership_deleted(db: Session, event: IdentityEvent) -> IdentityEventResult:
    data = _parse(MembershipData, event)
    workspace = (
        db.query(Workspace).filter(Workspace.external_org_id == data.organization.id).first()
    )
    if workspace is None:
        return IdentityEventResult(type=event.type, handled=False)
    unlinked = unlink_user_from_workspace(db, data.public_user_data.user_id, workspace.id)
    return IdentityEventResult(type=event.type, handled=unlinked, workspace_id=str(workspace.id))


_HANDLERS = {
    "organization.created": _organization_created,
    "organization.updated": _organization_updated,
    "user.created": _user_upserted,
    "user.updated": _user_upserted,
    "organizationMembership.created": _membership_created,
    "organizationMembership.updated": _membership_created,
    "organizationMembership.deleted": _membership_deleted,
}


def handle_identity_event(db: Session, event: IdentityEvent) -> IdentityEventResult:
    """Apply one provider event. Unknown event types are logged and ignored."""
    handler = _HANDLERS.get(event.type)
    if handler is None:
        logger.info("Ignoring identity event type=%s", event.type)
        return IdentityEventResult(type=event.type, handled=False)
    result = handler(db, event)
    logger.info(
        "Identity event handled: type=%s workspace=%s user=%s",
        event.type,
        result.workspace_id,
        result.user_id,
    )
    return result
