"""Registration and current-identity endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import get_audit_service, get_current_identity, get_identity_directory
from ticketauth.core.database import get_db
from ticketauth.core.security import VerifiedIdentity
from ticketauth.schemas.auth import MeResponse, RegisterRequest, RegistrationResponse
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory
from ticketauth.services.registration_service import RegistrationService

router = APIRouter()


@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    directory: IdentityDirectory = Depends(get_identity_directory),
    audit: AuditService = Depends(get_audit_service),
):
    """Public self-registration.

    Creates the directory identity and a PENDING local account. An invite code,
    if given, determines the role (and event, for STAFF); without one the
    account gets the default ATTENDEE role.

    Raises:
        400 if the password fails policy
        404 if the invite code does not exist
        409 if the email is taken or the invite code is no longer usable
        500 if the identity directory or database failed
    """
    service = RegistrationService(db, directory, audit)
    result = await service.register(
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
        invite_code=payload.invite_code,
    )
    return RegistrationResponse(
        account_id=result.account_id,
        email=result.email,
        display_name=result.display_name,
        approval_status=result.approval_status,
        role=result.role,
        event_id=result.event_id,
        event_name=result.event_name,
        invite_code_used=result.invite_code_used,
    )


@router.get("/me", response_model=MeResponse)
async def get_me(
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit_service),
):
    """Current identity as seen by this service."""
    account = await AccountStore(db, audit).get(identity.subject_id)
    return MeResponse(
        id=identity.subject_id,
        email=identity.email,
        username=identity.username,
        display_name=account.display_name if account else identity.display_name,
        roles=sorted(identity.roles),
        approval_status=account.approval_status if account else None,
        approved_at=account.approved_at if account else None,
        account_exists=account is not None,
    )
