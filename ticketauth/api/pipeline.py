"""Per-request access pipeline.

An explicit, ordered list of named stages run as an application-wide
dependency, so no route can opt out. Each stage declares what it reads and
what it may write:

1. verify_identity
   reads: Authorization header
   writes: request.state.identity (None for anonymous requests)
   raises: 401 for a bearer token that does not verify
2. provision_account
   reads: request.state.identity, path
   writes: accounts row (legacy APPROVED path) when missing,
           request.state.account
3. approval_gate
   reads: request.state.identity, request.state.account, path
   writes: NULL status normalisation, APPROVAL_GATE_VIOLATION audit records
   raises: ApprovalGateDenied

Authorization of individual resources happens later, inside the business
operation, through the AuthorizationEngine.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.api.deps import get_audit_service
from ticketauth.core.config import get_settings
from ticketauth.core.database import get_db
from ticketauth.core.exceptions import ApprovalGateDenied
from ticketauth.core.metrics import APPROVAL_GATE_DENIALS_TOTAL
from ticketauth.core.security import TokenValidationError, decode_token, identity_from_claims
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import ApprovalStatus, AuditAction
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.provisioning_service import ProvisioningService

logger = logging.getLogger(__name__)

REGISTER_PATH = "/api/v1/auth/register"

# The only bypass of the approval gate. Exact path matches, never prefixes.
APPROVAL_GATE_ALLOW_LIST: dict[str, str] = {
    # Has to work before any account exists.
    REGISTER_PATH: "public self-registration",
    # Redeeming an invite is a deliberate onboarding step that may precede approval.
    "/api/v1/invites/redeem": "pre-approval invite redemption",
    # Infrastructure probes; they expose no business data.
    "/api/health": "liveness probe",
    "/api/info": "service info probe",
}

APPROVAL_PENDING = "APPROVAL_PENDING"
APPROVAL_REJECTED = "APPROVAL_REJECTED"
APPROVAL_STATUS_UNKNOWN = "APPROVAL_STATUS_UNKNOWN"


@dataclass
class PipelineContext:
    db: AsyncSession
    audit: AuditService


@dataclass(frozen=True)
class PipelineStage:
    name: str
    reads: tuple[str, ...]
    writes: tuple[str, ...]
    run: Callable[[Request, PipelineContext], Awaitable[None]]


def is_allow_listed(path: str) -> bool:
    return path in APPROVAL_GATE_ALLOW_LIST


def check_approval(account: Account) -> None:
    """Raise ApprovalGateDenied unless the account is APPROVED.

    NULL must already have been normalised. Anything unrecognised blocks.
    """
    approval_status = account.approval_status
    if approval_status == ApprovalStatus.APPROVED:
        return
    if approval_status == ApprovalStatus.PENDING:
        raise ApprovalGateDenied(
            APPROVAL_PENDING,
            "Your account is pending approval by an administrator",
        )
    if approval_status == ApprovalStatus.REJECTED:
        reason = account.rejection_reason or "no reason given"
        raise ApprovalGateDenied(
            APPROVAL_REJECTED,
            f"Your account registration was rejected: {reason}",
            rejection_reason=account.rejection_reason,
        )
    raise ApprovalGateDenied(
        APPROVAL_STATUS_UNKNOWN,
        "Your account status could not be verified",
    )


async def verify_identity(request: Request, ctx: PipelineContext) -> None:
    request.state.identity = None
    header = request.headers.get("Authorization")
    if not header:
        return

    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return

    claims = decode_token(token.strip())
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        request.state.identity = identity_from_claims(claims, get_settings().token_client_id)
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def provision_account(request: Request, ctx: PipelineContext) -> None:
    request.state.account = None
    identity = request.state.identity
    if identity is None or request.url.path == REGISTER_PATH:
        return
    request.state.account = await ProvisioningService(ctx.db, ctx.audit).provision_if_missing(
        identity
    )


async def _deny(request: Request, ctx: PipelineContext, account: Account | None, denial: ApprovalGateDenied):
    request.state.gate_denial_code = denial.code
    APPROVAL_GATE_DENIALS_TOTAL.labels(code=denial.code).inc()
    account_id = account.id if account is not None else request.state.identity.subject_id
    log_json(
        logger,
        logging.WARNING,
        "approval_gate_denied",
        code=denial.code,
        account_id=account_id,
        method=request.method,
        path=request.url.path,
    )
    await ctx.audit.record(
        AuditAction.APPROVAL_GATE_VIOLATION,
        actor_id=account_id,
        target_id=account_id,
        resource_type="request",
        resource_id=f"{request.method} {request.url.path}"[:64],
        details={"code": denial.code, "method": request.method, "path": request.url.path},
    )
    raise denial


async def approval_gate(request: Request, ctx: PipelineContext) -> None:
    identity = request.state.identity
    if identity is None or is_allow_listed(request.url.path):
        return

    account = getattr(request.state, "account", None)
    try:
        if account is None:
            # The gate never fabricates accounts; a caller without one passes.
            account = await AccountStore(ctx.db, ctx.audit).get(identity.subject_id)
            if account is None:
                return
        elif account.approval_status is None:
            account = await AccountStore(ctx.db, ctx.audit).get(account.id)
        check_approval(account)
    except ApprovalGateDenied as denial:
        await _deny(request, ctx, account, denial)
    except Exception as exc:
        log_json(
            logger,
            logging.ERROR,
            "approval_gate_error",
            path=request.url.path,
            error=str(exc),
            exception=exc.__class__.__name__,
        )
        await _deny(
            request,
            ctx,
            account,
            ApprovalGateDenied(APPROVAL_STATUS_UNKNOWN, "Your account status could not be verified"),
        )


STAGES: tuple[PipelineStage, ...] = (
    PipelineStage(
        name="verify_identity",
        reads=("Authorization header",),
        writes=("request.state.identity",),
        run=verify_identity,
    ),
    PipelineStage(
        name="provision_account",
        reads=("request.state.identity", "path"),
        writes=("accounts", "request.state.account"),
        run=provision_account,
    ),
    PipelineStage(
        name="approval_gate",
        reads=("request.state.identity", "request.state.account", "path"),
        writes=("accounts.approval_status", "audit_records"),
        run=approval_gate,
    ),
)


async def run_request_pipeline(
    request: Request,
    db: AsyncSession = Depends(get_db),
    audit: AuditService = Depends(get_audit_service),
) -> None:
    ctx = PipelineContext(db=db, audit=audit)
    for stage in STAGES:
        await stage.run(request, ctx)
