"""Service for querying audit records."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.models.audit_record import AuditRecord
from ticketauth.models.enums import AuditAction


class AuditQueryService:
    """Read side of the audit trail, newest first."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_records(
        self,
        *,
        action: AuditAction | None = None,
        actor_id: UUID | None = None,
        target_id: UUID | None = None,
        event_id: UUID | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditRecord], int]:
        query = select(AuditRecord)
        count_query = select(func.count()).select_from(AuditRecord)

        conditions = []
        if action is not None:
            conditions.append(AuditRecord.action == action)
        if actor_id is not None:
            conditions.append(AuditRecord.actor_account_id == actor_id)
        if target_id is not None:
            conditions.append(AuditRecord.target_account_id == target_id)
        if event_id is not None:
            conditions.append(AuditRecord.event_id == event_id)
        if start_time is not None:
            conditions.append(AuditRecord.created_at >= start_time)
        if end_time is not None:
            conditions.append(AuditRecord.created_at <= end_time)

        if conditions:
            query = query.where(*conditions)
            count_query = count_query.where(*conditions)

        total = int((await self.db.scalar(count_query)) or 0)

        query = query.order_by(AuditRecord.created_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_for_account(
        self,
        account_id: UUID,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditRecord], int]:
        """Records where the account is either the actor or the target."""
        condition = (AuditRecord.actor_account_id == account_id) | (
            AuditRecord.target_account_id == account_id
        )
        total = int(
            (await self.db.scalar(select(func.count()).select_from(AuditRecord).where(condition)))
            or 0
        )
        result = await self.db.execute(
            select(AuditRecord)
            .where(condition)
            .order_by(AuditRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total
