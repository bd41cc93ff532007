"""Pydantic schemas for administrative role management."""

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ticketauth.models.enums import AppRole


class AssignRoleRequest(BaseModel):
    role: AppRole = Field(..., description="Realm role to grant")

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class AccountRolesResponse(BaseModel):
    """`roles` is null when the directory could not be re-read after a change."""

    account_id: UUID
    email: str
    display_name: str | None = None
    roles: list[str] | None = None


class AvailableRolesResponse(BaseModel):
    roles: list[str]
