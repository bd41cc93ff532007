"""Admin routes for granting and revoking directory roles."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import get_audit_service, get_identity_directory, require_admin
from ticketauth.core.database import get_db
from ticketauth.core.security import VerifiedIdentity
from ticketauth.schemas.role import AccountRolesResponse, AssignRoleRequest, AvailableRolesResponse
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory
from ticketauth.services.role_governance_service import AccountRoles, RoleGovernanceService, parse_role

router = APIRouter()


def _to_response(result: AccountRoles) -> AccountRolesResponse:
    return AccountRolesResponse(
        account_id=result.account.id,
        email=result.account.email,
        display_name=result.account.display_name,
        roles=result.roles,
    )


@router.get("/roles", response_model=AvailableRolesResponse)
async def list_available_roles(
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = RoleGovernanceService(db, directory, audit)
    return AvailableRolesResponse(roles=await service.available_roles())


@router.get("/users/{account_id}/roles", response_model=AccountRolesResponse)
async def get_account_roles(
    account_id: UUID,
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = RoleGovernanceService(db, directory, audit)
    return _to_response(await service.get_roles(account_id))


@router.post("/users/{account_id}/roles", response_model=AccountRolesResponse)
async def assign_account_role(
    account_id: UUID,
    payload: AssignRoleRequest,
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = RoleGovernanceService(db, directory, audit)
    return _to_response(await service.assign(admin.subject_id, account_id, payload.role))


@router.delete("/users/{account_id}/roles/{role_name}", response_model=AccountRolesResponse)
async def revoke_account_role(
    account_id: UUID,
    role_name: str,
    admin: VerifiedIdentity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    service = RoleGovernanceService(db, directory, audit)
    return _to_response(await service.revoke(admin.subject_id, account_id, parse_role(role_name)))
