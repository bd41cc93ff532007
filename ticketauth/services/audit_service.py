"""Audit sink.

Every record is written in its own session and transaction, after the business
transaction it describes has committed or rolled back. A failure to write is
logged and counted, never raised: audit can not fail or undo business work.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ticketauth.core.metrics import AUDIT_WRITE_FAILURES_TOTAL
from ticketauth.core.request_context import get_client_ip, get_user_agent
from ticketauth.core.structured_logging import log_json
from ticketauth.core.system_account import SystemAccount
from ticketauth.models.audit_record import AuditRecord
from ticketauth.models.enums import AuditAction

logger = logging.getLogger(__name__)

_MAX_DETAILS_LENGTH = 4000
_MAX_USER_AGENT_LENGTH = 512

_clock_lock = threading.Lock()
_last_timestamp: datetime | None = None


def _next_timestamp() -> datetime:
    """Strictly increasing UTC timestamps so records sort in write order."""
    global _last_timestamp
    with _clock_lock:
        now = datetime.now(UTC)
        if _last_timestamp is not None and now <= _last_timestamp:
            now = _last_timestamp + timedelta(microseconds=1)
        _last_timestamp = now
        return now


def format_details(details: dict[str, Any] | str | None) -> str | None:
    """Render details as `key=value,key=value`, skipping None values."""
    if details is None:
        return None
    if isinstance(details, str):
        text = details
    else:
        text = ",".join(f"{key}={value}" for key, value in details.items() if value is not None)
    if len(text) > _MAX_DETAILS_LENGTH:
        text = text[: _MAX_DETAILS_LENGTH - 3] + "..."
    return text or None


class AuditService:
    """Failure-isolated, append-only audit writer."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        system_account: SystemAccount,
    ):
        """Initialize audit service.

        Args:
            session_factory: Factory for independent audit sessions
            system_account: Actor used when no account is known yet
        """
        self.session_factory = session_factory
        self.system_account = system_account

    async def record(
        self,
        action: AuditAction,
        *,
        actor_id: UUID | None = None,
        target_id: UUID | None = None,
        resource_type: str | None = None,
        resource_id: UUID | str | None = None,
        event_id: UUID | None = None,
        details: dict[str, Any] | str | None = None,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Write one audit record. Never raises.

        Args:
            action: What happened
            actor_id: Who did it (defaults to the SYSTEM account)
            target_id: Account the action was applied to
            resource_type: Kind of resource touched, e.g. "invite_code"
            resource_id: Id of that resource
            event_id: Event the action is scoped to
            details: Free-form context, rendered as key=value pairs
            client_ip: Defaults to the current request's client IP
            user_agent: Defaults to the current request's user agent
        """
        try:
            audit_record = AuditRecord(
                action=action,
                actor_account_id=actor_id or self.system_account.id,
                target_account_id=target_id,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                event_id=event_id,
                details=format_details(details),
                client_ip=(client_ip or get_client_ip())[:45],
                user_agent=(user_agent or get_user_agent())[:_MAX_USER_AGENT_LENGTH],
                created_at=_next_timestamp(),
            )
            async with self.session_factory() as session:
                session.add(audit_record)
                await session.commit()
        except Exception as exc:
            AUDIT_WRITE_FAILURES_TOTAL.inc()
            log_json(
                logger,
                logging.ERROR,
                "audit_write_failed",
                action=getattr(action, "value", action),
                actor_id=actor_id,
                target_id=target_id,
                error=str(exc),
                exception=exc.__class__.__name__,
            )
