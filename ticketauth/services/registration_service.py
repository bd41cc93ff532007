"""Self-service registration.

The directory and the local database are two independently failing systems
with no shared transaction. Registration keeps them consistent by ordering:
all local validation first, then the directory writes, then one local
transaction (account, staff grant, invite claim). If that transaction fails,
the directory writes are compensated. Compensation is best effort; a failed
compensation is logged as an orphaned identity and never replaces the original
error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import (
    EmailAlreadyInUseError,
    InvalidInputError,
    InvalidInviteCodeError,
    InviteCodeNotFoundError,
    PersistenceError,
    TicketAuthError,
)
from ticketauth.core.metrics import REGISTRATIONS_TOTAL
from ticketauth.core.security import PasswordValidationError, validate_password
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import DEFAULT_ROLE, AppRole, ApprovalStatus, AuditAction
from ticketauth.models.event import EventStaffGrant
from ticketauth.services.account_store import AccountStore, normalize_email
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory
from ticketauth.services.invite_code_service import InviteCodeService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    account_id: UUID
    email: str
    display_name: str | None
    approval_status: ApprovalStatus
    role: AppRole
    event_id: UUID | None = None
    event_name: str | None = None
    invite_code_used: bool = False


@dataclass
class _DirectoryIdentity:
    id: UUID
    created: bool
    role_assigned: bool = False


class RegistrationService:
    """Orchestrates directory provisioning and local account creation."""

    def __init__(self, db: AsyncSession, directory: IdentityDirectory, audit: AuditService):
        self.db = db
        self.directory = directory
        self.audit = audit
        self.accounts = AccountStore(db, audit)
        self.invites = InviteCodeService(db, directory, audit)

    async def register(
        self,
        email: str,
        password: str,
        display_name: str | None = None,
        invite_code: str | None = None,
    ) -> RegistrationResult:
        """Register a new account in PENDING state.

        Registration never approves an account, even with a valid invite.

        Args:
            email: Email address, also the directory username
            password: Password, stored only in the directory
            display_name: Optional name; defaults to the email's local part
            invite_code: Optional invite code granting a role

        Returns:
            RegistrationResult describing the new account

        Raises:
            InvalidInputError: If the password fails policy
            EmailAlreadyInUseError: If the email is already registered
            InviteCodeNotFoundError: If the invite code does not exist
            InvalidInviteCodeError: If the invite code cannot be used
            DirectoryOperationError: If the directory could not be updated
            PersistenceError: If the local account could not be saved
        """
        email = normalize_email(email)
        display_name = (display_name or "").strip() or email.split("@", 1)[0]

        try:
            validate_password(password)
        except PasswordValidationError as exc:
            REGISTRATIONS_TOTAL.labels(outcome="invalid_input").inc()
            raise InvalidInputError(str(exc)) from exc

        await self.audit.record(
            AuditAction.REGISTRATION_ATTEMPT,
            resource_type="account",
            details={"email": email, "invite_code": bool(invite_code)},
        )

        if await self.accounts.exists_by_email(email):
            await self._fail(email, "EMAIL_ALREADY_EXISTS")
            raise EmailAlreadyInUseError(email)

        role = DEFAULT_ROLE
        invite = None
        event_id = None
        event_name = None
        if invite_code:
            try:
                invite = await self.invites.validate_for_use(invite_code)
            except InviteCodeNotFoundError:
                await self._fail(email, "INVITE_CODE_NOT_FOUND")
                raise
            except InvalidInviteCodeError as exc:
                await self._fail(email, f"INVALID_INVITE_CODE:{exc.reason}")
                raise
            role = AppRole(invite.role)
            event_id = invite.target_event_id
            event_name = invite.target_event.name if invite.target_event is not None else None

        identity = await self._resolve_identity(email, password, display_name)

        try:
            await self.directory.assign_role(identity.id, role.value)
            identity.role_assigned = True
        except Exception:
            await self._compensate(identity, role, email)
            await self._fail(email, "ROLE_ASSIGNMENT_FAILED", target_id=identity.id)
            raise

        try:
            await self._persist(identity.id, email, display_name, role, event_id, invite)
        except TicketAuthError as exc:
            await self.db.rollback()
            await self._compensate(identity, role, email)
            reason = getattr(exc, "reason", None)
            await self._fail(
                email,
                f"INVALID_INVITE_CODE:{reason}" if reason else exc.error_code.upper(),
                target_id=identity.id,
            )
            raise
        except IntegrityError as exc:
            await self.db.rollback()
            await self._compensate(identity, role, email)
            await self._fail(email, "EMAIL_ALREADY_EXISTS", target_id=identity.id)
            raise EmailAlreadyInUseError(email) from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            await self._compensate(identity, role, email)
            await self._fail(email, "PERSISTENCE_FAILED", target_id=identity.id)
            raise PersistenceError("Failed to save the new account") from exc
        except Exception:
            await self.db.rollback()
            await self._compensate(identity, role, email)
            await self._fail(email, "PERSISTENCE_FAILED", target_id=identity.id)
            raise

        REGISTRATIONS_TOTAL.labels(outcome="success").inc()
        log_json(
            logger,
            logging.INFO,
            "registration_succeeded",
            account_id=identity.id,
            role=role.value,
            event_id=event_id,
            reused_identity=not identity.created,
        )
        await self.audit.record(
            AuditAction.REGISTRATION_SUCCESS,
            actor_id=identity.id,
            target_id=identity.id,
            resource_type="account",
            resource_id=identity.id,
            event_id=event_id,
            details={"email": email, "role": role.value, "approval_status": "PENDING"},
        )
        if invite is not None:
            await self.audit.record(
                AuditAction.INVITE_REDEEMED,
                actor_id=identity.id,
                target_id=identity.id,
                resource_type="invite_code",
                resource_id=invite.id,
                event_id=event_id,
                details={"code": invite.code, "role": role.value, "via": "registration"},
            )
            if role.is_highest_privilege:
                await self.invites.audit_admin_grant(
                    identity.id, invite.id, invite.code, invite.created_by_account_id
                )

        return RegistrationResult(
            account_id=identity.id,
            email=email,
            display_name=display_name,
            approval_status=ApprovalStatus.PENDING,
            role=role,
            event_id=event_id,
            event_name=event_name,
            invite_code_used=invite is not None,
        )

    async def _resolve_identity(
        self, email: str, password: str, display_name: str
    ) -> _DirectoryIdentity:
        """Reuse a directory identity left by an earlier failed attempt, else create one."""
        try:
            existing_id = await self.directory.find_id_by_email(email)
        except Exception:
            await self._fail(email, "DIRECTORY_LOOKUP_FAILED")
            raise

        if existing_id is not None:
            if await self.db.get(Account, existing_id) is not None:
                await self._fail(email, "EMAIL_ALREADY_EXISTS", target_id=existing_id)
                raise EmailAlreadyInUseError(email)
            log_json(
                logger,
                logging.INFO,
                "registration_reusing_identity",
                identity_id=existing_id,
            )
            return _DirectoryIdentity(id=existing_id, created=False)

        try:
            identity_id = await self.directory.create_identity(email, password, display_name)
        except Exception:
            await self._fail(email, "IDENTITY_CREATION_FAILED")
            raise
        return _DirectoryIdentity(id=identity_id, created=True)

    async def _persist(
        self,
        account_id: UUID,
        email: str,
        display_name: str,
        role: AppRole,
        event_id: UUID | None,
        invite,
    ) -> None:
        """Account, staff grant and invite claim commit together or not at all."""
        now = datetime.now(UTC)
        await self.accounts.save(
            Account(
                id=account_id,
                email=email,
                display_name=display_name,
                approval_status=ApprovalStatus.PENDING,
            )
        )
        if role.is_event_scoped and event_id is not None:
            self.db.add(
                EventStaffGrant(
                    event_id=event_id,
                    account_id=account_id,
                    granted_by_account_id=invite.created_by_account_id if invite else None,
                    granted_at=now,
                )
            )
            await self.db.flush()
        if invite is not None:
            await self.invites.claim(invite, account_id, now)
        await self.db.commit()

    async def _compensate(self, identity: _DirectoryIdentity, role: AppRole, email: str) -> None:
        """Undo directory writes. Never raises."""
        try:
            if identity.created:
                await self.directory.delete_identity(identity.id)
                operation = "delete_identity"
            elif identity.role_assigned:
                await self.directory.revoke_role(identity.id, role.value)
                operation = "revoke_role"
            else:
                return
        except Exception as exc:
            log_json(
                logger,
                logging.ERROR,
                "orphaned_directory_identity",
                identity_id=identity.id,
                email=email,
                created=identity.created,
                error=str(exc),
                exception=exc.__class__.__name__,
            )
            return

        log_json(
            logger,
            logging.WARNING,
            "registration_compensated",
            identity_id=identity.id,
            operation=operation,
        )

    async def _fail(self, email: str, reason: str, *, target_id: UUID | None = None) -> None:
        REGISTRATIONS_TOTAL.labels(outcome="failed").inc()
        log_json(logger, logging.WARNING, "registration_failed", email=email, reason=reason)
        await self.audit.record(
            AuditAction.REGISTRATION_FAILED,
            target_id=target_id,
            resource_type="account",
            details={"email": email, "reason": reason},
        )
