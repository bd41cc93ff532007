"""First-seen-token account provisioning.

Callers that authenticated with the directory before self-registration existed
have no local row. They are provisioned as APPROVED so they keep working.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.security import VerifiedIdentity
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import ApprovalStatus, AuditAction
from ticketauth.services.account_store import AccountStore, normalize_email
from ticketauth.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class ProvisioningService:
    def __init__(self, db: AsyncSession, audit: AuditService):
        self.db = db
        self.audit = audit
        self.accounts = AccountStore(db, audit)

    async def provision_if_missing(self, identity: VerifiedIdentity) -> Account | None:
        """Return the caller's account, creating an APPROVED one if none exists.

        Returns None when no row can be created (no email claim, or the email
        belongs to another account); the approval gate then lets the request
        through unmodified and resource checks decide.
        """
        account = await self.accounts.get(identity.subject_id)
        if account is not None:
            return account

        if not identity.email:
            log_json(
                logger,
                logging.WARNING,
                "provisioning_skipped",
                subject_id=identity.subject_id,
                reason="missing_email_claim",
            )
            return None

        email = normalize_email(identity.email)
        if await self.accounts.exists_by_email(email):
            log_json(
                logger,
                logging.WARNING,
                "provisioning_skipped",
                subject_id=identity.subject_id,
                reason="email_belongs_to_other_account",
            )
            return None

        account = Account(
            id=identity.subject_id,
            email=email,
            display_name=identity.display_name or identity.username,
            approval_status=ApprovalStatus.APPROVED,
            approved_at=datetime.now(UTC),
        )
        try:
            await self.accounts.save(account)
            await self.db.commit()
        except IntegrityError:
            # A concurrent request for the same caller created it first.
            await self.db.rollback()
            return await self.accounts.get(identity.subject_id)

        log_json(logger, logging.INFO, "account_provisioned", account_id=account.id)
        await self.audit.record(
            AuditAction.ACCOUNT_PROVISIONED,
            actor_id=account.id,
            target_id=account.id,
            resource_type="account",
            resource_id=account.id,
            details={"email": email, "approval_status": "APPROVED", "path": "legacy"},
        )
        return account
