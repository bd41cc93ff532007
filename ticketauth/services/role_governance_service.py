"""Administrative role grants.

Roles live only in the directory. An administrator grants or revokes them
here; nothing is stored locally beyond the audit trail. Holding a role never
bypasses resource checks: an ADMIN still cannot act on events it does not own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import AccountNotFoundError, DirectoryOperationError, InvalidInputError
from ticketauth.core.structured_logging import log_json
from ticketauth.models.account import Account
from ticketauth.models.enums import AppRole, AuditAction
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.identity_directory import IdentityDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountRoles:
    account: Account
    roles: list[str] | None


def parse_role(value: str) -> AppRole:
    """Raises InvalidInputError for a name that is not an application role."""
    try:
        return AppRole.parse(value)
    except ValueError as exc:
        raise InvalidInputError(str(exc)) from exc


class RoleGovernanceService:
    def __init__(self, db: AsyncSession, directory: IdentityDirectory, audit: AuditService):
        self.db = db
        self.directory = directory
        self.audit = audit
        self.accounts = AccountStore(db, audit)

    async def _require_account(self, account_id: UUID) -> Account:
        account = await self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def assign(self, admin_id: UUID, account_id: UUID, role: AppRole) -> AccountRoles:
        """Grant a realm role to a local account.

        Raises:
            AccountNotFoundError: If the account does not exist locally
            DirectoryOperationError: If the directory grant failed
        """
        account = await self._require_account(account_id)
        await self.directory.assign_role(account_id, role.value)

        details: dict[str, object] = {"role": role.value, "email": account.email}
        if role.is_highest_privilege:
            details["severity"] = "HIGH"
            log_json(
                logger,
                logging.WARNING,
                "admin_role_granted",
                severity="HIGH",
                account_id=account_id,
                admin_id=admin_id,
            )
        else:
            log_json(logger, logging.INFO, "role_assigned", account_id=account_id, role=role.value)

        await self.audit.record(
            AuditAction.ROLE_ASSIGNED,
            actor_id=admin_id,
            target_id=account_id,
            resource_type="role",
            resource_id=role.value,
            details=details,
        )
        return AccountRoles(account=account, roles=await self._current_roles(account_id))

    async def revoke(self, admin_id: UUID, account_id: UUID, role: AppRole) -> AccountRoles:
        """Remove a realm role from a local account.

        Raises:
            AccountNotFoundError: If the account does not exist locally
            DirectoryOperationError: If the directory revoke failed
        """
        account = await self._require_account(account_id)
        await self.directory.revoke_role(account_id, role.value)

        log_json(logger, logging.INFO, "role_revoked", account_id=account_id, role=role.value)
        await self.audit.record(
            AuditAction.ROLE_REVOKED,
            actor_id=admin_id,
            target_id=account_id,
            resource_type="role",
            resource_id=role.value,
            details={"role": role.value, "email": account.email},
        )
        return AccountRoles(account=account, roles=await self._current_roles(account_id))

    async def get_roles(self, account_id: UUID) -> AccountRoles:
        """Roles as the directory reports them now.

        Raises:
            AccountNotFoundError: If the account does not exist locally
            DirectoryOperationError: If the directory could not be read
        """
        account = await self._require_account(account_id)
        return AccountRoles(account=account, roles=sorted(await self.directory.get_roles(account_id)))

    async def available_roles(self) -> list[str]:
        """Application roles the directory realm actually defines."""
        defined = await self.directory.list_available_roles()
        return [role.value for role in AppRole if role.value in defined]

    async def _current_roles(self, account_id: UUID) -> list[str] | None:
        try:
            return sorted(await self.directory.get_roles(account_id))
        except DirectoryOperationError as exc:
            # The change is already made; report roles as unknown rather than fail.
            log_json(
                logger,
                logging.WARNING,
                "directory_roles_unavailable",
                account_id=account_id,
                error=str(exc),
            )
            return None
