"""Invite code endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import get_audit_service, get_current_identity, get_identity_directory
from ticketauth.core.database import get_db
from ticketauth.core.security import VerifiedIdentity
from ticketauth.models.enums import AppRole
from ticketauth.models.invite_code import InviteCode
from ticketauth.schemas.invite_code import (
    GenerateInviteCodeRequest,
    InviteCodeListResponse,
    InviteCodeResponse,
    RedeemInviteCodeRequest,
    RedeemInviteCodeResponse,
)
from ticketauth.services.audit_service import AuditService
from ticketauth.services.authorization_service import AuthorizationEngine
from ticketauth.services.identity_directory import IdentityDirectory
from ticketauth.services.invite_code_service import InviteCodeService

router = APIRouter()


def _to_response(invite: InviteCode) -> InviteCodeResponse:
    return InviteCodeResponse(
        id=invite.id,
        code=invite.code,
        role=invite.role,
        event_id=invite.target_event_id,
        event_name=invite.target_event.name if invite.target_event is not None else None,
        status=invite.status,
        created_by=invite.created_by_account_id,
        created_at=invite.created_at,
        expires_at=invite.expires_at,
        redeemed_by=invite.redeemed_by_account_id,
        redeemed_at=invite.redeemed_at,
        revoked_at=invite.revoked_at,
        revoked_reason=invite.revoked_reason,
    )


@router.post("", response_model=InviteCodeResponse, status_code=status.HTTP_201_CREATED)
async def generate_invite_code(
    payload: GenerateInviteCodeRequest,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    """Issue an invite code.

    ADMIN may issue any role. ORGANIZER may issue STAFF codes for events they
    organise.
    """
    service = InviteCodeService(db, directory, audit)
    invite = await service.issue(
        identity.subject_id,
        identity.roles,
        payload.role,
        payload.event_id,
        payload.expiration_hours,
    )
    return _to_response(invite)


@router.post("/redeem", response_model=RedeemInviteCodeResponse)
async def redeem_invite_code(
    payload: RedeemInviteCodeRequest,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    """Redeem an invite code for the calling account. Allowed before approval."""
    service = InviteCodeService(db, directory, audit)
    result = await service.redeem(identity.subject_id, payload.code)
    return RedeemInviteCodeResponse(
        role_assigned=result.role,
        event_id=result.event_id,
        event_name=result.event_name,
        current_roles=result.current_roles,
    )


@router.get("", response_model=InviteCodeListResponse)
async def list_invite_codes(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    """Admins see every code; everybody else sees the codes they issued."""
    service = InviteCodeService(db, directory, audit)
    if identity.has_role(AppRole.ADMIN.value):
        invites, total = await service.list_all(limit=limit, offset=offset)
    else:
        invites, total = await service.list_by_creator(
            identity.subject_id, limit=limit, offset=offset
        )
    return InviteCodeListResponse(
        items=[_to_response(i) for i in invites],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/events/{event_id}", response_model=InviteCodeListResponse)
async def list_event_invite_codes(
    event_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    if not identity.has_role(AppRole.ADMIN.value):
        await AuthorizationEngine(db).require_organizer(identity.subject_id, event_id)

    service = InviteCodeService(db, directory, audit)
    invites, total = await service.list_by_event(event_id, limit=limit, offset=offset)
    return InviteCodeListResponse(
        items=[_to_response(i) for i in invites],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{code_id}", response_model=InviteCodeResponse)
async def get_invite_code(
    code_id: UUID,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = InviteCodeService(db, directory, audit)
    invite = await service.get(code_id)
    await service.ensure_can_view(identity.subject_id, identity.roles, invite)
    return _to_response(invite)


@router.delete("/{code_id}", response_model=InviteCodeResponse)
async def revoke_invite_code(
    code_id: UUID,
    reason: str | None = Query(None, max_length=500),
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    """Revoke a PENDING code. Only its issuer, the event organizer or an admin may."""
    service = InviteCodeService(db, directory, audit)
    invite = await service.get(code_id)
    await service.ensure_can_view(identity.subject_id, identity.roles, invite)
    invite = await service.revoke(identity.subject_id, code_id, reason)
    return _to_response(invite)
