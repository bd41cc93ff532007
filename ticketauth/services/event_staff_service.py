"""Event staff assignment, managed by the event's organizer."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ticketauth.core.exceptions import AccountNotFoundError, InvalidBusinessStateError
from ticketauth.core.structured_logging import log_json
from ticketauth.models.enums import AppRole, AuditAction
from ticketauth.models.event import EventStaffGrant
from ticketauth.services.account_store import AccountStore
from ticketauth.services.audit_service import AuditService
from ticketauth.services.authorization_service import AuthorizationEngine
from ticketauth.services.identity_directory import IdentityDirectory

logger = logging.getLogger(__name__)


class EventStaffService:
    def __init__(self, db: AsyncSession, directory: IdentityDirectory, audit: AuditService):
        self.db = db
        self.directory = directory
        self.audit = audit
        self.accounts = AccountStore(db, audit)
        self.authz = AuthorizationEngine(db)

    async def assign(self, organizer_id: UUID, event_id: UUID, account_id: UUID) -> EventStaffGrant:
        """Grant staff access on an event the caller organises.

        The account must already hold STAFF in the directory; the grant decides
        which events that capability applies to.

        Raises:
            AccessDeniedError: If the caller does not organise the event
            AccountNotFoundError: If the staff account does not exist
            InvalidBusinessStateError: If the account lacks STAFF or is already assigned
        """
        event = await self.authz.require_organizer(organizer_id, event_id)

        account = await self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        if not await self.directory.has_role(account_id, AppRole.STAFF.value):
            raise InvalidBusinessStateError(
                f"Account must hold the {AppRole.STAFF.value} role before it can be assigned to an event"
            )

        if await self.db.get(EventStaffGrant, (event.id, account_id)) is not None:
            raise InvalidBusinessStateError(f"Account is already assigned as staff to event '{event.name}'")

        grant = EventStaffGrant(
            event_id=event.id,
            account_id=account_id,
            granted_by_account_id=organizer_id,
            granted_at=datetime.now(UTC),
        )
        grant.account = account
        self.db.add(grant)
        await self.db.commit()

        log_json(logger, logging.INFO, "staff_assigned", event_id=event.id, account_id=account_id)
        await self.audit.record(
            AuditAction.STAFF_ASSIGNED,
            actor_id=organizer_id,
            target_id=account_id,
            resource_type="event",
            resource_id=event.id,
            event_id=event.id,
            details={"event": event.name, "staff_email": account.email},
        )
        return grant

    async def remove(self, organizer_id: UUID, event_id: UUID, account_id: UUID) -> None:
        event = await self.authz.require_organizer(organizer_id, event_id)

        grant = await self.db.get(EventStaffGrant, (event.id, account_id))
        if grant is None:
            raise InvalidBusinessStateError(f"Account is not assigned as staff to event '{event.name}'")

        await self.db.delete(grant)
        await self.db.commit()

        log_json(logger, logging.INFO, "staff_removed", event_id=event.id, account_id=account_id)
        await self.audit.record(
            AuditAction.STAFF_REMOVED,
            actor_id=organizer_id,
            target_id=account_id,
            resource_type="event",
            resource_id=event.id,
            event_id=event.id,
            details={"event": event.name},
        )

    async def list_staff(self, organizer_id: UUID, event_id: UUID) -> list[EventStaffGrant]:
        event = await self.authz.require_organizer(organizer_id, event_id)
        result = await self.db.execute(
            select(EventStaffGrant)
            .where(EventStaffGrant.event_id == event.id)
            .options(selectinload(EventStaffGrant.account))
            .order_by(EventStaffGrant.granted_at.asc())
        )
        return list(result.scalars().all())
