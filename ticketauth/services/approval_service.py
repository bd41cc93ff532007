"""Administrative approval of registered accounts."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import (
    AccountNotFoundError,
    DirectoryOperationError,
    InvalidApprovalStateError,
    InvalidInputError,
)
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import ApprovalStatus, AuditAction
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory

logger = logging.getLogger(__name__)


class ApprovalService:
    """PENDING -> APPROVED / REJECTED transitions; both targets are terminal."""

    def __init__(self, db: AsyncSession, directory: IdentityDirectory, audit: AuditService):
        self.db = db
        self.directory = directory
        self.audit = audit
        self.accounts = AccountStore(db, audit)

    async def list_pending(self, *, limit: int = 50, offset: int = 0) -> tuple[list[Account], int]:
        return await self.accounts.find_by_approval_status(
            ApprovalStatus.PENDING, limit=limit, offset=offset
        )

    async def list_all(self, *, limit: int = 50, offset: int = 0) -> tuple[list[Account], int]:
        return await self.accounts.find_by_approval_status(None, limit=limit, offset=offset)

    async def _transition(self, account_id: UUID, action: str, **values) -> Account:
        """Conditionally move a PENDING account to a terminal status and commit.

        Raises:
            AccountNotFoundError: If the account does not exist
            InvalidApprovalStateError: If the account is no longer PENDING
        """
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account_id)
            .where(Account.approval_status == ApprovalStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            current = await self.accounts.get(account_id)
            if current is None:
                raise AccountNotFoundError(account_id)
            raise InvalidApprovalStateError(
                f"Cannot {action} account: current status is "
                f"{ApprovalStatus(current.approval_status).value}, expected PENDING"
            )

        await self.db.commit()
        return await self.db.get(Account, account_id, populate_existing=True)

    async def approve(self, account_id: UUID, admin_id: UUID) -> Account:
        """Approve a PENDING account.

        Raises:
            AccountNotFoundError: If the account does not exist
            InvalidApprovalStateError: If the account is not PENDING
        """
        account = await self._transition(
            account_id,
            "approve",
            approval_status=ApprovalStatus.APPROVED,
            approved_at=datetime.now(UTC),
            approved_by_account_id=admin_id,
            rejection_reason=None,
        )

        await self._set_directory_enabled(account_id, True)
        log_json(logger, logging.INFO, "account_approved", account_id=account_id, admin_id=admin_id)
        await self.audit.record(
            AuditAction.USER_APPROVED,
            actor_id=admin_id,
            target_id=account_id,
            resource_type="account",
            resource_id=account_id,
            details={"email": account.email, "previous_status": "PENDING"},
        )
        return account

    async def reject(self, account_id: UUID, admin_id: UUID, reason: str | None) -> Account:
        """Reject a PENDING account with a mandatory reason.

        Raises:
            InvalidInputError: If no reason is given
            AccountNotFoundError: If the account does not exist
            InvalidApprovalStateError: If the account is not PENDING
        """
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputError("A rejection reason is required")

        account = await self._transition(
            account_id,
            "reject",
            approval_status=ApprovalStatus.REJECTED,
            approved_by_account_id=admin_id,
            rejection_reason=reason,
        )

        await self._set_directory_enabled(account_id, False)
        log_json(logger, logging.INFO, "account_rejected", account_id=account_id, admin_id=admin_id)
        await self.audit.record(
            AuditAction.USER_REJECTED,
            actor_id=admin_id,
            target_id=account_id,
            resource_type="account",
            resource_id=account_id,
            details={"email": account.email, "reason": reason},
        )
        return account

    async def _set_directory_enabled(self, account_id: UUID, enabled: bool) -> None:
        # The local decision is authoritative; the approval gate enforces it either way.
        try:
            await self.directory.set_enabled(account_id, enabled)
        except DirectoryOperationError as exc:
            log_json(
                logger,
                logging.WARNING,
                "directory_enable_sync_failed",
                account_id=account_id,
                enabled=enabled,
                error=str(exc),
            )
