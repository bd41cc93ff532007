"""Local account records and their legacy approval normalisation."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import ApprovalStatus, AuditAction
from ticketauth.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountStore:
    """Reads and writes `accounts` rows.

    Rows created before approval existed have a NULL status. Every read through
    this store grandfathers them to APPROVED and persists that before returning,
    so no caller ever observes a NULL status.
    """

    def __init__(self, db: AsyncSession, audit: AuditService | None = None):
        self.db = db
        self.audit = audit

    async def get(self, account_id: UUID) -> Account | None:
        account = await self.db.get(Account, account_id)
        if account is not None:
            await self._normalize(account)
        return account

    async def get_by_email(self, email: str) -> Account | None:
        result = await self.db.execute(
            select(Account).where(Account.email == normalize_email(email))
        )
        account = result.scalar_one_or_none()
        if account is not None:
            await self._normalize(account)
        return account

    async def exists_by_email(self, email: str) -> bool:
        count = await self.db.scalar(
            select(func.count()).select_from(Account).where(Account.email == normalize_email(email))
        )
        return bool(count)

    async def save(self, account: Account) -> Account:
        """Stage the account in the current transaction and flush it."""
        account.email = normalize_email(account.email)
        self.db.add(account)
        await self.db.flush()
        return account

    async def find_by_approval_status(
        self,
        status: ApprovalStatus | None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Account], int]:
        """Page through accounts, optionally filtered by approval status, oldest first."""
        query = select(Account)
        count_query = select(func.count()).select_from(Account)
        if status is not None:
            query = query.where(Account.approval_status == status)
            count_query = count_query.where(Account.approval_status == status)

        total = int((await self.db.scalar(count_query)) or 0)
        result = await self.db.execute(
            query.order_by(Account.created_at.asc(), Account.id.asc()).limit(limit).offset(offset)
        )
        accounts = list(result.scalars().all())
        for account in accounts:
            await self._normalize(account)
        return accounts, total

    async def _normalize(self, account: Account) -> None:
        if account.approval_status is not None:
            return

        account.approval_status = ApprovalStatus.APPROVED
        account.approved_at = datetime.now(UTC)
        await self.db.commit()

        log_json(
            logger,
            logging.INFO,
            "legacy_approval_migrated",
            account_id=account.id,
        )
        if self.audit is not None:
            await self.audit.record(
                AuditAction.LEGACY_APPROVAL_MIGRATED,
                target_id=account.id,
                resource_type="account",
                resource_id=account.id,
                details={"previous_status": "null", "new_status": ApprovalStatus.APPROVED.value},
            )
