"""Pydantic schemas for audit endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ticketauth.models.enums import AuditAction


class AuditRecordResponse(BaseModel):
    id: UUID
    action: AuditAction
    actor_account_id: UUID
    target_account_id: UUID | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    event_id: UUID | None = None
    details: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditRecordListResponse(BaseModel):
    """Paginated list response for audit records, newest first."""

    items: list[AuditRecordResponse]
    total: int
    limit: int
    offset: int
