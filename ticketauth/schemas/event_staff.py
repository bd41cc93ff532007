"""Pydantic schemas for event staff endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class AssignStaffRequest(BaseModel):
    account_id: UUID = Field(..., description="Account to assign; must hold the STAFF role")


class StaffMemberResponse(BaseModel):
    account_id: UUID
    email: str
    display_name: str | None = None
    granted_at: datetime
    granted_by: UUID | None = None


class StaffListResponse(BaseModel):
    event_id: UUID
    items: list[StaffMemberResponse]
