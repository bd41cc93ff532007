"""Pydantic schemas for account approval endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ticketauth.models.enums import ApprovalStatus


class AccountApprovalResponse(BaseModel):
    id: UUID
    email: str
    display_name: str | None = None
    approval_status: ApprovalStatus
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    rejection_reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountApprovalListResponse(BaseModel):
    items: list[AccountApprovalResponse]
    total: int
    limit: int
    offset: int


class RejectAccountRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000, description="Shown to the rejected user")
