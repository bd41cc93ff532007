"""Audit trail endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import get_current_identity, require_admin
from ticketauth.core.database import get_db
from ticketauth.core.security import VerifiedIdentity
from ticketauth.models.audit_record import AuditRecord
from ticketauth.models.enums import AuditAction
from ticketauth.schemas.audit import AuditRecordListResponse, AuditRecordResponse
from ticketauth.services.audit_query_service import AuditQueryService
from ticketauth.services.authorization_service import AuthorizationEngine

router = APIRouter()


def _page(records: list[AuditRecord], total: int, limit: int, offset: int) -> AuditRecordListResponse:
    return AuditRecordListResponse(
        items=[AuditRecordResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("", response_model=AuditRecordListResponse, summary="List audit records (admin)")
async def list_audit_records(
    action: AuditAction | None = Query(None),
    actor_id: UUID | None = Query(None),
    target_id: UUID | None = Query(None),
    event_id: UUID | None = Query(None),
    start_time: datetime | None = Query(None),
    end_time: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
) -> AuditRecordListResponse:
    records, total = await AuditQueryService(db).list_records(
        action=action,
        actor_id=actor_id,
        target_id=target_id,
        event_id=event_id,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    )
    return _page(records, total, limit, offset)


@router.get(
    "/events/{event_id}",
    response_model=AuditRecordListResponse,
    summary="List audit records for an event (organizer)",
)
async def list_event_audit_records(
    event_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> AuditRecordListResponse:
    await AuthorizationEngine(db).require_organizer(identity.subject_id, event_id)
    records, total = await AuditQueryService(db).list_records(
        event_id=event_id, limit=limit, offset=offset
    )
    return _page(records, total, limit, offset)


@router.get("/me", response_model=AuditRecordListResponse, summary="List my audit records")
async def list_my_audit_records(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> AuditRecordListResponse:
    records, total = await AuditQueryService(db).list_for_account(
        identity.subject_id, limit=limit, offset=offset
    )
    return _page(records, total, limit, offset)
