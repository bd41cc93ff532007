"""Invite code service.

Generates, validates, redeems and revokes single-use role-granting codes.

Redemption claims the code with a conditional update (status must still be
PENDING) inside the same transaction that records the staff grant, so two
concurrent redeemers can never both succeed: the loser observes the code as
already redeemed. The directory grant is made after the claim and undone if the
local commit fails.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ticketauth.core.config import get_settings
from ticketauth.core.exceptions import (
    AccessDeniedError,
    AccountNotFoundError,
    DirectoryOperationError,
    EventNotFoundError,
    InvalidInputError,
    InvalidInviteCodeError,
    InviteCodeGenerationError,
    InviteCodeNotFoundError,
    PersistenceError,
)
from ticketauth.core.metrics import INVITE_REDEMPTIONS_TOTAL
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import AppRole, AuditAction, InviteCodeStatus
from ticketauth.models.event import Event, EventStaffGrant
from ticketauth.models.invite_code import InviteCode
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.authorization_service import AuthorizationEngine
from ticketauth.services.identity_directory import IdentityDirectory

logger = logging.getLogger(__name__)

# No 0/O or 1/I: codes are read aloud and typed by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 16
CODE_GROUP_SIZE = 4
MAX_GENERATION_ATTEMPTS = 10


def generate_code() -> str:
    """Random code such as `ABCD-EFGH-JKLM-NPQR`."""
    raw = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return "-".join(raw[i : i + CODE_GROUP_SIZE] for i in range(0, CODE_LENGTH, CODE_GROUP_SIZE))


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True)
class RedemptionResult:
    role: AppRole
    event_id: UUID | None = None
    event_name: str | None = None
    current_roles: list[str] | None = field(default=None)


class InviteCodeService:
    """Service for the invite code lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        directory: IdentityDirectory,
        audit: AuditService,
    ):
        """Initialize invite code service.

        Args:
            db: Request-scoped database session
            directory: Identity directory client
            audit: Failure-isolated audit sink
        """
        self.db = db
        self.directory = directory
        self.audit = audit
        self.accounts = AccountStore(db, audit)
        self.authz = AuthorizationEngine(db)
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def authorize_issuance(
        self,
        issuer_id: UUID,
        issuer_roles: Collection[str],
        role: AppRole,
        event_id: UUID | None,
    ) -> None:
        """Enforce who may grant which role.

        ADMIN may issue any role. ORGANIZER may issue STAFF codes for events
        they organise and nothing else.

        Raises:
            AccessDeniedError: If the issuer may not grant this role
        """
        roles = {r.upper() for r in issuer_roles}
        if AppRole.ADMIN.value in roles:
            return

        if AppRole.ORGANIZER.value in roles:
            if role is not AppRole.STAFF:
                raise AccessDeniedError(
                    f"Organizers may only issue {AppRole.STAFF.value} invite codes, not {role.value}"
                )
            if event_id is None:
                raise InvalidInputError("Event ID is required for STAFF role invites")
            await self.authz.require_organizer(issuer_id, event_id)
            return

        raise AccessDeniedError(f"Not allowed to issue {role.value} invite codes")

    async def issue(
        self,
        issuer_id: UUID,
        issuer_roles: Collection[str],
        role: AppRole,
        event_id: UUID | None,
        ttl_hours: int | None = None,
    ) -> InviteCode:
        await self.authorize_issuance(issuer_id, issuer_roles, role, event_id)
        return await self.generate(issuer_id, role, event_id, ttl_hours)

    async def generate(
        self,
        creator_id: UUID,
        role: AppRole,
        event_id: UUID | None = None,
        ttl_hours: int | None = None,
    ) -> InviteCode:
        """Create a new PENDING invite code.

        Args:
            creator_id: Account issuing the code
            role: Role granted on redemption
            event_id: Required for event-scoped roles, forbidden otherwise
            ttl_hours: Lifetime; defaults to the configured TTL

        Returns:
            The persisted InviteCode

        Raises:
            AccountNotFoundError: If the creator has no account
            EventNotFoundError: If the target event does not exist
            InvalidInputError: If role/event/ttl are structurally invalid
            InviteCodeGenerationError: If no unused code was found
        """
        if ttl_hours is None:
            ttl_hours = self.settings.invite_default_ttl_hours
        if ttl_hours < 1 or ttl_hours > self.settings.invite_max_ttl_hours:
            raise InvalidInputError(
                f"Expiration must be between 1 and {self.settings.invite_max_ttl_hours} hours"
            )

        if await self.db.get(Account, creator_id) is None:
            raise AccountNotFoundError(creator_id)

        event = None
        if role.is_event_scoped:
            if event_id is None:
                raise InvalidInputError(f"Event ID is required for {role.value} role invites")
            event = await self.db.get(Event, event_id)
            if event is None:
                raise EventNotFoundError(event_id)
        elif event_id is not None:
            raise InvalidInputError(f"Event ID must not be set for {role.value} role invites")

        now = datetime.now(UTC)
        for attempt in range(1, MAX_GENERATION_ATTEMPTS + 1):
            code = generate_code()
            taken = await self.db.scalar(select(exists().where(InviteCode.code == code)))
            if taken:
                log_json(logger, logging.WARNING, "invite_code_collision", attempt=attempt)
                continue

            invite = InviteCode(
                code=code,
                role=role,
                target_event=event,
                status=InviteCodeStatus.PENDING,
                created_by_account_id=creator_id,
                expires_at=now + timedelta(hours=ttl_hours),
            )
            self.db.add(invite)
            try:
                await self.db.commit()
            except IntegrityError:
                # Lost a race for the same code; the unique index is authoritative.
                await self.db.rollback()
                log_json(logger, logging.WARNING, "invite_code_collision", attempt=attempt)
                continue
            break
        else:
            log_json(
                logger,
                logging.ERROR,
                "invite_code_generation_exhausted",
                attempts=MAX_GENERATION_ATTEMPTS,
            )
            raise InviteCodeGenerationError(
                "Could not generate a unique invite code, please retry"
            )

        log_json(
            logger,
            logging.INFO,
            "invite_code_created",
            invite_id=invite.id,
            role=role.value,
            event_id=event_id,
            expires_at=invite.expires_at,
        )
        await self.audit.record(
            AuditAction.INVITE_CREATED,
            actor_id=creator_id,
            resource_type="invite_code",
            resource_id=invite.id,
            event_id=event_id,
            details={
                "role": role.value,
                "expires_at": invite.expires_at.isoformat(),
            },
        )
        return invite

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def _find_by_code(self, code: str) -> InviteCode | None:
        result = await self.db.execute(
            select(InviteCode)
            .where(InviteCode.code == normalize_code(code))
            .options(selectinload(InviteCode.target_event))
        )
        return result.scalar_one_or_none()

    async def _expire_if_due(self, invite: InviteCode, now: datetime) -> bool:
        """Flip an overdue PENDING code to EXPIRED and persist it."""
        if invite.status != InviteCodeStatus.PENDING or not invite.is_past_expiry(now):
            return False

        invite.status = InviteCodeStatus.EXPIRED
        await self.db.commit()
        log_json(logger, logging.INFO, "invite_code_expired", invite_id=invite.id)
        return True

    @staticmethod
    def _ensure_redeemable(invite: InviteCode) -> None:
        if invite.status == InviteCodeStatus.PENDING:
            return
        if invite.status == InviteCodeStatus.REDEEMED:
            raise InvalidInviteCodeError.already_redeemed(
                invite.redeemed_by_account_id, invite.redeemed_at
            )
        if invite.status == InviteCodeStatus.EXPIRED:
            raise InvalidInviteCodeError.expired(invite.expires_at)
        if invite.status == InviteCodeStatus.REVOKED:
            raise InvalidInviteCodeError.revoked(invite.revoked_reason)
        raise InvalidInviteCodeError("Invite code is not valid for redemption", "not_pending")

    async def validate_for_use(self, code: str, now: datetime | None = None) -> InviteCode:
        """Resolve a code and make sure it can be redeemed right now.

        Overdue codes are expired (and persisted) before validation.

        Raises:
            InviteCodeNotFoundError: If no such code exists
            InvalidInviteCodeError: If the code is not PENDING
        """
        invite = await self._find_by_code(code)
        if invite is None:
            raise InviteCodeNotFoundError()

        await self._expire_if_due(invite, now or datetime.now(UTC))
        self._ensure_redeemable(invite)
        return invite

    async def claim(self, invite: InviteCode, redeemer_id: UUID, now: datetime) -> None:
        """Conditionally flip PENDING -> REDEEMED in the current transaction.

        Raises:
            InvalidInviteCodeError: If another caller claimed (or expired) it first
        """
        result = await self.db.execute(
            update(InviteCode)
            .where(InviteCode.id == invite.id)
            .where(InviteCode.status == InviteCodeStatus.PENDING)
            .where(InviteCode.expires_at >= now)
            .values(
                status=InviteCodeStatus.REDEEMED,
                redeemed_by_account_id=redeemer_id,
                redeemed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            invite.status = InviteCodeStatus.REDEEMED
            invite.redeemed_by_account_id = redeemer_id
            invite.redeemed_at = now
            return

        # Nothing is persisted here: the caller's transaction may hold other writes.
        await self.db.refresh(invite)
        if invite.status == InviteCodeStatus.PENDING and invite.is_past_expiry(now):
            raise InvalidInviteCodeError.expired(invite.expires_at)
        self._ensure_redeemable(invite)
        # Still PENDING but the update missed: treat as lost to a concurrent redeemer.
        raise InvalidInviteCodeError.already_redeemed()

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    async def redeem(self, user_id: UUID, code: str) -> RedemptionResult:
        """Redeem a code for an existing account.

        Args:
            user_id: Redeeming account
            code: The code as typed by the user

        Returns:
            The granted role, the event (if any) and the redeemer's roles
            as re-read from the directory

        Raises:
            AccountNotFoundError: If the redeemer has no account
            InviteCodeNotFoundError: If no such code exists
            InvalidInviteCodeError: If the code is redeemed, expired or revoked
            DirectoryOperationError: If the directory grant failed
            PersistenceError: If the local state could not be committed
        """
        account = await self.accounts.get(user_id)
        if account is None:
            raise AccountNotFoundError(user_id)

        try:
            invite = await self.validate_for_use(code)
        except InviteCodeNotFoundError:
            INVITE_REDEMPTIONS_TOTAL.labels(outcome="not_found").inc()
            await self._audit_failed_redemption(user_id, None, None, "CODE_NOT_FOUND")
            raise
        except InvalidInviteCodeError as exc:
            INVITE_REDEMPTIONS_TOTAL.labels(outcome="invalid").inc()
            invite = await self._find_by_code(code)
            await self._audit_failed_redemption(
                user_id,
                invite.id if invite else None,
                invite.target_event_id if invite else None,
                f"INVALID_CODE:{exc.reason}",
            )
            raise

        invite_id = invite.id
        invite_code = invite.code
        role = AppRole(invite.role)
        event_id = invite.target_event_id
        created_by = invite.created_by_account_id
        now = datetime.now(UTC)

        try:
            await self.claim(invite, user_id, now)
        except InvalidInviteCodeError as exc:
            await self.db.rollback()
            INVITE_REDEMPTIONS_TOTAL.labels(outcome="invalid").inc()
            await self._audit_failed_redemption(
                user_id, invite_id, event_id, f"INVALID_CODE:{exc.reason}"
            )
            raise

        try:
            await self.directory.assign_role(user_id, role.value)
        except DirectoryOperationError as exc:
            await self.db.rollback()
            INVITE_REDEMPTIONS_TOTAL.labels(outcome="directory_error").inc()
            log_json(
                logger,
                logging.ERROR,
                "invite_role_assignment_failed",
                invite_id=invite_id,
                user_id=user_id,
                role=role.value,
                error=str(exc),
            )
            await self._audit_failed_redemption(
                user_id, invite_id, event_id, "ROLE_ASSIGNMENT_FAILED"
            )
            raise DirectoryOperationError(
                f"Failed to assign role '{role.value}' in the identity directory"
            ) from exc

        event_name = None
        try:
            if role.is_event_scoped and event_id is not None:
                event = await self.db.get(Event, event_id)
                event_name = event.name if event else None
                grant = await self.db.get(EventStaffGrant, (event_id, user_id))
                if grant is None:
                    self.db.add(
                        EventStaffGrant(
                            event_id=event_id,
                            account_id=user_id,
                            granted_by_account_id=created_by,
                            granted_at=now,
                        )
                    )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            INVITE_REDEMPTIONS_TOTAL.labels(outcome="persistence_error").inc()
            await self._undo_role_grant(user_id, role)
            await self._audit_failed_redemption(user_id, invite_id, event_id, "PERSISTENCE_FAILED")
            raise PersistenceError("Failed to record invite code redemption") from exc

        INVITE_REDEMPTIONS_TOTAL.labels(outcome="success").inc()
        log_json(
            logger,
            logging.INFO,
            "invite_code_redeemed",
            invite_id=invite_id,
            user_id=user_id,
            role=role.value,
            event_id=event_id,
        )
        await self.audit.record(
            AuditAction.INVITE_REDEEMED,
            actor_id=user_id,
            target_id=user_id,
            resource_type="invite_code",
            resource_id=invite_id,
            event_id=event_id,
            details={"code": invite_code, "role": role.value},
        )
        if role.is_highest_privilege:
            await self.audit_admin_grant(user_id, invite_id, invite_code, created_by)

        return RedemptionResult(
            role=role,
            event_id=event_id,
            event_name=event_name,
            current_roles=await self._current_roles(user_id),
        )

    async def _current_roles(self, user_id: UUID) -> list[str] | None:
        try:
            return sorted(await self.directory.get_roles(user_id))
        except DirectoryOperationError as exc:
            # The redemption is committed; report roles as unknown rather than fail.
            log_json(
                logger,
                logging.WARNING,
                "directory_roles_unavailable",
                user_id=user_id,
                error=str(exc),
            )
            return None

    async def _undo_role_grant(self, user_id: UUID, role: AppRole) -> None:
        try:
            await self.directory.revoke_role(user_id, role.value)
        except Exception as exc:
            log_json(
                logger,
                logging.ERROR,
                "compensation_failed",
                operation="revoke_role",
                user_id=user_id,
                role=role.value,
                error=str(exc),
            )
            return
        await self.audit.record(
            AuditAction.ROLE_REVOKED,
            target_id=user_id,
            details={"role": role.value, "reason": "redemption_rolled_back"},
        )

    async def audit_admin_grant(
        self,
        user_id: UUID,
        invite_id: UUID,
        invite_code: str,
        created_by: UUID,
    ) -> None:
        """High-severity trail for ADMIN granted through an invite, by redemption or registration."""
        log_json(
            logger,
            logging.WARNING,
            "admin_role_granted_via_invite",
            severity="HIGH",
            user_id=user_id,
            invite_id=invite_id,
            created_by=created_by,
        )
        await self.audit.record(
            AuditAction.ADMIN_ROLE_GRANTED_VIA_INVITE,
            actor_id=user_id,
            target_id=user_id,
            resource_type="invite_code",
            resource_id=invite_id,
            details={
                "severity": "HIGH",
                "code": invite_code,
                "created_by": created_by,
            },
        )

    async def _audit_failed_redemption(
        self,
        user_id: UUID,
        invite_id: UUID | None,
        event_id: UUID | None,
        reason: str,
    ) -> None:
        await self.audit.record(
            AuditAction.FAILED_INVITE_REDEMPTION,
            actor_id=user_id,
            target_id=user_id,
            resource_type="invite_code",
            resource_id=invite_id,
            event_id=event_id,
            details={"reason": reason},
        )

    # ------------------------------------------------------------------
    # Revocation and expiry
    # ------------------------------------------------------------------

    async def revoke(self, revoker_id: UUID, code_id: UUID, reason: str | None) -> InviteCode:
        """Revoke a PENDING code.

        Raises:
            AccountNotFoundError: If the revoker has no account
            InviteCodeNotFoundError: If no such code exists
            InvalidInviteCodeError: If the code is no longer PENDING
        """
        if await self.db.get(Account, revoker_id) is None:
            raise AccountNotFoundError(revoker_id)

        invite = await self.get(code_id)
        if invite.status != InviteCodeStatus.PENDING:
            raise InvalidInviteCodeError.not_pending(InviteCodeStatus(invite.status).value)

        now = datetime.now(UTC)
        result = await self.db.execute(
            update(InviteCode)
            .where(InviteCode.id == code_id)
            .where(InviteCode.status == InviteCodeStatus.PENDING)
            .values(
                status=InviteCodeStatus.REVOKED,
                revoked_at=now,
                revoked_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            await self.db.refresh(invite)
            raise InvalidInviteCodeError.not_pending(InviteCodeStatus(invite.status).value)
        await self.db.commit()

        invite.status = InviteCodeStatus.REVOKED
        invite.revoked_at = now
        invite.revoked_reason = reason

        log_json(logger, logging.INFO, "invite_code_revoked", invite_id=code_id, revoker_id=revoker_id)
        await self.audit.record(
            AuditAction.INVITE_REVOKED,
            actor_id=revoker_id,
            resource_type="invite_code",
            resource_id=code_id,
            event_id=invite.target_event_id,
            details={"reason": reason},
        )
        return invite

    async def mark_expired_codes(self, now: datetime | None = None) -> int:
        """Bulk-expire every overdue PENDING code. Safe to run concurrently with redemption."""
        now = now or datetime.now(UTC)
        result = await self.db.execute(
            update(InviteCode)
            .where(InviteCode.status == InviteCodeStatus.PENDING)
            .where(InviteCode.expires_at < now)
            .values(status=InviteCodeStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def ensure_can_view(
        self, caller_id: UUID, caller_roles: Collection[str], invite: InviteCode
    ) -> None:
        """Admins see everything; others see codes they created or for events they organise."""
        if AppRole.ADMIN.value in {r.upper() for r in caller_roles}:
            return
        if invite.created_by_account_id == caller_id:
            return
        if invite.target_event_id is not None and await self.authz.is_organizer(
            caller_id, invite.target_event_id
        ):
            return
        raise AccessDeniedError("Access denied to invite code: caller neither created it nor organises its event")

    async def get(self, code_id: UUID) -> InviteCode:
        result = await self.db.execute(
            select(InviteCode)
            .where(InviteCode.id == code_id)
            .options(selectinload(InviteCode.target_event))
        )
        invite = result.scalar_one_or_none()
        if invite is None:
            raise InviteCodeNotFoundError(f"Invite code not found: {code_id}")
        await self._expire_if_due(invite, datetime.now(UTC))
        return invite

    async def _list(self, condition, limit: int, offset: int) -> tuple[list[InviteCode], int]:
        query = select(InviteCode).options(selectinload(InviteCode.target_event))
        count_query = select(func.count()).select_from(InviteCode)
        if condition is not None:
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = int((await self.db.scalar(count_query)) or 0)
        result = await self.db.execute(
            query.order_by(InviteCode.created_at.desc()).limit(limit).offset(offset)
        )
        invites = list(result.scalars().all())

        now = datetime.now(UTC)
        overdue = [
            i for i in invites if i.status == InviteCodeStatus.PENDING and i.is_past_expiry(now)
        ]
        if overdue:
            for invite in overdue:
                invite.status = InviteCodeStatus.EXPIRED
            await self.db.commit()
        return invites, total

    async def list_by_creator(
        self, creator_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> tuple[list[InviteCode], int]:
        return await self._list(InviteCode.created_by_account_id == creator_id, limit, offset)

    async def list_by_event(
        self, event_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> tuple[list[InviteCode], int]:
        return await self._list(InviteCode.target_event_id == event_id, limit, offset)

    async def list_all(self, *, limit: int = 50, offset: int = 0) -> tuple[list[InviteCode], int]:
        return await self._list(None, limit, offset)
