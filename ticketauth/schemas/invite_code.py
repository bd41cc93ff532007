"""Pydantic schemas for invite code endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ticketauth.models.enums import AppRole, InviteCodeStatus


class GenerateInviteCodeRequest(BaseModel):
    """Request schema for POST /api/v1/invites.

    `event_id` is required for STAFF codes and must be omitted otherwise.
    """

    role: AppRole = Field(..., description="Role granted on redemption")
    event_id: UUID | None = Field(None, description="Target event for STAFF codes")
    expiration_hours: int | None = Field(
        None, ge=1, description="Lifetime in hours; defaults to the configured TTL"
    )

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class InviteCodeResponse(BaseModel):
    id: UUID
    code: str
    role: AppRole
    event_id: UUID | None = None
    event_name: str | None = None
    status: InviteCodeStatus
    created_by: UUID
    created_at: datetime
    expires_at: datetime
    redeemed_by: UUID | None = None
    redeemed_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class InviteCodeListResponse(BaseModel):
    items: list[InviteCodeResponse]
    total: int
    limit: int
    offset: int


class RedeemInviteCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32, description="Invite code as received")


class RedeemInviteCodeResponse(BaseModel):
    """Result of a redemption.

    `current_roles` is re-read from the identity directory after the grant; it
    is null if the directory could not be queried afterwards.
    """

    message: str = "Invite code redeemed successfully"
    role_assigned: AppRole
    event_id: UUID | None = None
    event_name: str | None = None
    current_roles: list[str] | None = None
