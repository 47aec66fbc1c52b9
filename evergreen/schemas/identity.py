"""Identity-provider event schemas (organization, user and membership events)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IdentityEvent(BaseModel):
    """Envelope of one provider event: ``type`` selects the shape of ``data``."""

    type: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class OrganizationData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    name: str | None = None
    slug: str | None = None


class EmailAddress(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    email_address: str


class UserData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    email_addresses: list[EmailAddress] = Field(default_factory=list)
    primary_email_address_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None

    @property
    def primary_email(self) -> str | None:
        for address in self.email_addresses:
            if address.id and address.id == self.primary_email_address_id:
                return address.email_address
        return self.email_addresses[0].email_address if self.email_addresses else None


class PublicUserData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., min_length=1)
    identifier: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    image_url: str | None = None


class MembershipData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    organization: OrganizationData
    public_user_data: PublicUserData
    role: str | None = None


class IdentityEventResult(BaseModel):
    """Outcome of handling one event."""

    type: str
    handled: bool
    workspace_id: str | None = None
    user_id: str | None = None
