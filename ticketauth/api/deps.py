"""FastAPI dependencies for identity, collaborators and coarse role checks."""

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketauth.core.database import get_db, get_session_factory
from ticketauth.core.exceptions import AccountNotFoundError, SystemAccountMissingError
from ticketauth.core.security import VerifiedIdentity
from ticketauth.core.system_account import SystemAccount
from ticketauth.models.account import Account
from ticketauth.models.enums import AppRole
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory


def get_system_account(request: Request) -> SystemAccount:
    """SYSTEM account handle resolved once at startup."""
    system_account = getattr(request.app.state, "system_account", None)
    if system_account is None:
        raise SystemAccountMissingError("SYSTEM account has not been loaded")
    return system_account


def get_identity_directory(request: Request) -> IdentityDirectory:
    return request.app.state.directory


def get_audit_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    system_account: SystemAccount = Depends(get_system_account),
) -> AuditService:
    return AuditService(session_factory, system_account)


def get_optional_identity(request: Request) -> VerifiedIdentity | None:
    """Identity written by the request pipeline; None for anonymous callers."""
    return getattr(request.state, "identity", None)


def get_current_identity(
    identity: VerifiedIdentity | None = Depends(get_optional_identity),
) -> VerifiedIdentity:
    """Get the verified caller.

    Raises:
        HTTPException: 401 if the request carried no bearer token
    """
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def get_current_account(
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit_service),
) -> Account:
    account = await AccountStore(db, audit).get(identity.subject_id)
    if account is None:
        raise AccountNotFoundError(identity.subject_id)
    return account


def require_roles(*roles: AppRole) -> Callable:
    """Dependency factory for coarse, claims-based role checks.

    Passing is necessary but not sufficient: resource-level checks still go
    through the AuthorizationEngine.

    Example:
        @router.get("/admin/approvals")
        async def list_approvals(
            identity: VerifiedIdentity = Depends(require_roles(AppRole.ADMIN))
        ):
            pass
    """
    allowed = tuple(role.value for role in roles)

    async def check_roles(
        identity: VerifiedIdentity = Depends(get_current_identity),
    ) -> VerifiedIdentity:
        if not identity.has_any_role(*allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Requires one of: {', '.join(allowed)}.",
            )
        return identity

    return check_roles


def require_admin() -> Callable:
    return require_roles(AppRole.ADMIN)
