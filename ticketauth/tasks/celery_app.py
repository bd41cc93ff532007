"""Celery application configuration.

The worker runs periodic maintenance only; request handling never enqueues
work here.
"""

from __future__ import annotations

import logging
from contextvars import Token
from datetime import timedelta

from celery import Celery
from celery.signals import task_postrun, task_prerun

from ticketauth.core.config import get_settings
from ticketauth.core.request_context import reset_request_id, set_request_id

logger = logging.getLogger(__name__)
_task_tokens: dict[str, Token[str | None]] = {}

settings = get_settings()
_sweep_interval = timedelta(minutes=settings.invite_expiry_sweep_minutes)

celery_app = Celery(
    "ticketauth",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend or settings.celery_broker_url,
    include=["ticketauth.tasks.invite_expiry_task"],
)

celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_routes={"ticketauth.tasks.*": {"queue": "maintenance"}},
    beat_schedule={
        "invite-code-expiry": {
            "task": "ticketauth.tasks.invite_expiry_task.expire_invite_codes",
            "schedule": _sweep_interval,
            # A sweep still queued when the next one is due is redundant.
            "options": {"expires": _sweep_interval.total_seconds()},
        }
    },
)


@task_prerun.connect
def _attach_correlation_id(
    task_id: str | None = None,
    **_: object,
) -> None:
    """Use the task id as the correlation id for everything the task logs or audits."""

    if not task_id:
        return
    _task_tokens[task_id] = set_request_id(task_id)


@task_postrun.connect
def _detach_correlation_id(
    task_id: str | None = None,
    **_: object,
) -> None:
    if not task_id:
        return
    token = _task_tokens.pop(task_id, None)
    if not token:
        return
    try:
        reset_request_id(token)
    except ValueError:
        logger.exception("Failed to reset task correlation ID")
