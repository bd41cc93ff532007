"""Celery task that expires overdue invite codes."""

import asyncio
import logging
import time

from ticketauth.core.database import AsyncSessionLocal
from ticketauth.core.structured_logging import log_json
from ticketauth.core.system_account import load_system_account
from ticketauth.models.enums import AuditAction
from ticketauth.services.audit_service import AuditService
from ticketauth.services.invite_code_service import InviteCodeService
from ticketauth.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_expiry_sweep(session_factory=AsyncSessionLocal) -> int:
    """Mark every overdue PENDING invite code EXPIRED and audit the batch."""
    async with session_factory() as session:
        try:
            system_account = await load_system_account(session)
            audit = AuditService(session_factory, system_account)
            # Expiry never touches the directory.
            service = InviteCodeService(session, None, audit)
            expired = await service.mark_expired_codes()
        except Exception:
            await session.rollback()
            raise

    if expired > 0:
        await audit.record(
            AuditAction.INVITE_CODES_EXPIRED,
            resource_type="invite_code",
            details={"count": expired},
        )
    return expired


@celery_app.task(name="ticketauth.tasks.invite_expiry_task.expire_invite_codes")
def expire_invite_codes() -> int:
    """Expire overdue invite codes.

    Runs periodically via Celery Beat (see `ticketauth.tasks.celery_app`).
    """

    started = time.perf_counter()
    log_json(logger, logging.INFO, "invite_expiry_start")

    try:
        expired = asyncio.run(run_expiry_sweep())
    except Exception as exc:
        duration_ms = (time.perf_counter() - started) * 1000
        log_json(
            logger,
            logging.ERROR,
            "invite_expiry_error",
            duration_ms=round(duration_ms, 2),
            error=str(exc),
            exception=exc.__class__.__name__,
        )
        raise

    duration_ms = (time.perf_counter() - started) * 1000
    log_json(
        logger,
        logging.INFO,
        "invite_expiry_done",
        expired=expired,
        duration_ms=round(duration_ms, 2),
    )
    return expired
