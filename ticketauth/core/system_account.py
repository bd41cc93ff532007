"""The SYSTEM account: actor of last resort for audit records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import SystemAccountMissingError
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account

logger = logging.getLogger(__name__)

SYSTEM_ACCOUNT_ID = UUID("00000000-0000-0000-0000-000000000000")
SYSTEM_ACCOUNT_EMAIL = "system@ticketauth.local"


@dataclass(frozen=True)
class SystemAccount:
    id: UUID
    email: str


async def load_system_account(session: AsyncSession) -> SystemAccount:
    """Resolve the seeded SYSTEM row once at startup.

    Raises:
        SystemAccountMissingError: If the row has not been seeded
    """
    result = await session.execute(select(Account).where(Account.id == SYSTEM_ACCOUNT_ID))
    account = result.scalar_one_or_none()
    if account is None:
        log_json(logger, logging.CRITICAL, "system_account_missing", account_id=SYSTEM_ACCOUNT_ID)
        raise SystemAccountMissingError(
            "SYSTEM account is missing; run database migrations before starting the service"
        )

    log_json(logger, logging.INFO, "system_account_loaded", account_id=account.id)
    return SystemAccount(id=account.id, email=account.email)
