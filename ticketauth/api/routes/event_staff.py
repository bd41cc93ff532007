"""Event staff management, restricted to the event's organizer."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import get_audit_service, get_current_identity, get_identity_directory
from ticketauth.core.database import get_db
from ticketauth.core.security import VerifiedIdentity
from ticketauth.models.event import EventStaffGrant
from ticketauth.schemas.event_staff import AssignStaffRequest, StaffListResponse, StaffMemberResponse
from ticketauth.services.audit_service import AuditService
from ticketauth.services.event_staff_service import EventStaffService
from ticketauth.services.identity_directory import IdentityDirectory

router = APIRouter()


def _to_member(grant: EventStaffGrant) -> StaffMemberResponse:
    return StaffMemberResponse(
        account_id=grant.account_id,
        email=grant.account.email,
        display_name=grant.account.display_name,
        granted_at=grant.granted_at,
        granted_by=grant.granted_by_account_id,
    )


@router.get("/{event_id}/staff", response_model=StaffListResponse)
async def list_event_staff(
    event_id: UUID,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = EventStaffService(db, directory, audit)
    grants = await service.list_staff(identity.subject_id, event_id)
    return StaffListResponse(event_id=event_id, items=[_to_member(g) for g in grants])


@router.post(
    "/{event_id}/staff",
    response_model=StaffMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_event_staff(
    event_id: UUID,
    payload: AssignStaffRequest,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = EventStaffService(db, directory, audit)
    grant = await service.assign(identity.subject_id, event_id, payload.account_id)
    return _to_member(grant)


@router.delete("/{event_id}/staff/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_event_staff(
    event_id: UUID,
    account_id: UUID,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = EventStaffService(db, directory, audit)
    await service.remove(identity.subject_id, event_id, account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
