"""Per-resource authorization: event ownership and staff grants.

Directory roles are coarse capabilities. Holding ORGANIZER globally does not
give access to somebody else's event, so every decision here is a fresh query
against the local tables and nothing is cached between calls.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import AccessDeniedError, AccountNotFoundError, EventNotFoundError
from ticketauth.models.account import Account
from ticketauth.models.event import Event, EventStaffGrant


class AuthorizationEngine:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _resolve(self, caller_id: UUID, event: Event | UUID) -> Event:
        account_exists = await self.db.scalar(select(exists().where(Account.id == caller_id)))
        if not account_exists:
            raise AccountNotFoundError(caller_id)

        if isinstance(event, Event):
            return event

        resolved = await self.db.get(Event, event)
        if resolved is None:
            raise EventNotFoundError(event)
        return resolved

    async def _staff_grant_exists(self, caller_id: UUID, event_id: UUID) -> bool:
        return bool(
            await self.db.scalar(
                select(
                    exists().where(
                        EventStaffGrant.event_id == event_id,
                        EventStaffGrant.account_id == caller_id,
                    )
                )
            )
        )

    async def require_organizer(self, caller_id: UUID, event: Event | UUID) -> Event:
        """Return the event if the caller organises it.

        Raises:
            AccountNotFoundError: If the caller has no local account
            EventNotFoundError: If the event does not exist
            AccessDeniedError: If the caller is not the event's organizer
        """
        resolved = await self._resolve(caller_id, event)
        if resolved.organizer_id != caller_id:
            raise AccessDeniedError(
                f"Access denied to event '{resolved.name}': only its organizer may perform this action"
            )
        return resolved

    async def require_staff(self, caller_id: UUID, event: Event | UUID) -> Event:
        resolved = await self._resolve(caller_id, event)
        if not await self._staff_grant_exists(caller_id, resolved.id):
            raise AccessDeniedError(
                f"Access denied to event '{resolved.name}': caller is not assigned as staff"
            )
        return resolved

    async def require_organizer_or_staff(self, caller_id: UUID, event: Event | UUID) -> Event:
        resolved = await self._resolve(caller_id, event)
        if resolved.organizer_id == caller_id:
            return resolved
        if await self._staff_grant_exists(caller_id, resolved.id):
            return resolved
        raise AccessDeniedError(
            f"Access denied to event '{resolved.name}': caller is neither its organizer nor assigned staff"
        )

    async def is_organizer(self, caller_id: UUID, event_id: UUID) -> bool:
        organizer_id = await self.db.scalar(select(Event.organizer_id).where(Event.id == event_id))
        return organizer_id is not None and organizer_id == caller_id

    async def is_staff(self, caller_id: UUID, event_id: UUID) -> bool:
        return await self._staff_grant_exists(caller_id, event_id)

    async def has_access(self, caller_id: UUID, event_id: UUID) -> bool:
        return await self.is_organizer(caller_id, event_id) or await self.is_staff(
            caller_id, event_id
        )
