"""Pydantic schemas for registration and identity endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from ticketauth.models.enums import AppRole, ApprovalStatus


class RegisterRequest(BaseModel):
    """Request schema for self-service registration.

    Used for POST /api/v1/auth/register.
    """

    email: EmailStr = Field(..., description="Email address, also the login name")
    password: str = Field(..., min_length=1, max_length=128, description="Account password")
    display_name: str | None = Field(None, max_length=255, description="Name shown to others")
    invite_code: str | None = Field(
        None, max_length=32, description="Optional invite code granting a role"
    )


class RegistrationResponse(BaseModel):
    """Response schema for registration.

    The account always starts PENDING; an administrator approves it later.
    """

    account_id: UUID
    email: str
    display_name: str | None = None
    approval_status: ApprovalStatus
    role: AppRole
    event_id: UUID | None = None
    event_name: str | None = None
    invite_code_used: bool = False
    message: str = Field(
        default="Registration received. Your account is pending approval.",
    )


class MeResponse(BaseModel):
    """The caller's verified identity and local approval state."""

    id: UUID
    email: str | None = None
    username: str | None = None
    display_name: str | None = None
    roles: list[str]
    approval_status: ApprovalStatus | None = None
    approved_at: datetime | None = None
    account_exists: bool
