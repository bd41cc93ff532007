"""Admin routes for account approval."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import (
    get_audit_service,
    get_identity_directory,
    require_admin,
)
from ticketauth.core.database import get_db
from ticketauth.core.security import VerifiedIdentity
from ticketauth.models.account import Account
from ticketauth.schemas.approval import (
    AccountApprovalListResponse,
    AccountApprovalResponse,
    RejectAccountRequest,
)
from ticketauth.services.approval_service import ApprovalService
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory

router = APIRouter()


def _to_response(account: Account) -> AccountApprovalResponse:
    return AccountApprovalResponse(
        id=account.id,
        email=account.email,
        display_name=account.display_name,
        approval_status=account.approval_status,
        approved_at=account.approved_at,
        approved_by=account.approved_by_account_id,
        rejection_reason=account.rejection_reason,
        created_at=account.created_at,
    )


@router.get("/pending", response_model=AccountApprovalListResponse)
async def list_pending_accounts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = ApprovalService(db, directory, audit)
    accounts, total = await service.list_pending(limit=limit, offset=offset)
    return AccountApprovalListResponse(
        items=[_to_response(a) for a in accounts], total=total, limit=limit, offset=offset
    )


@router.get("", response_model=AccountApprovalListResponse)
async def list_accounts(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = ApprovalService(db, directory, audit)
    accounts, total = await service.list_all(limit=limit, offset=offset)
    return AccountApprovalListResponse(
        items=[_to_response(a) for a in accounts], total=total, limit=limit, offset=offset
    )


@router.post("/{account_id}/approve", response_model=AccountApprovalResponse)
async def approve_account(
    account_id: UUID,
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = ApprovalService(db, directory, audit)
    account = await service.approve(account_id, admin.subject_id)
    return _to_response(account)


@router.post("/{account_id}/reject", response_model=AccountApprovalResponse)
async def reject_account(
    account_id: UUID,
    payload: RejectAccountRequest,
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = ApprovalService(db, directory, audit)
    account = await service.reject(account_id, admin.subject_id, payload.reason)
    return _to_response(account)
