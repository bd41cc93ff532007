"""Prometheus metrics endpoint."""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.config import get_settings
from ticketauth.core.database import get_db
from ticketauth.core.metrics import ACCOUNTS_BY_APPROVAL_STATUS
from ticketauth.models.account import Account
from ticketauth.models.enums import ApprovalStatus

router = APIRouter()


def _check_scrape_token(token: str | None) -> None:
    settings = get_settings()
    if settings.environment != "production":
        return
    expected = settings.metrics_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not token or not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


async def _refresh_approval_gauge(db: AsyncSession) -> None:
    rows = await db.execute(
        select(Account.approval_status, func.count()).group_by(Account.approval_status)
    )
    counts = {approval_status: count for approval_status, count in rows.all()}
    for approval_status in ApprovalStatus:
        ACCOUNTS_BY_APPROVAL_STATUS.labels(approval_status=approval_status.value).set(
            counts.get(approval_status, 0)
        )
    # Legacy rows not yet normalised by the gate.
    ACCOUNTS_BY_APPROVAL_STATUS.labels(approval_status="UNSET").set(counts.get(None, 0))


@router.get(
    "/metrics",
    include_in_schema=False,
    summary="Prometheus metrics",
)
async def metrics_endpoint(
    x_metrics_token: str | None = Header(default=None, alias="X-Metrics-Token"),
    db: AsyncSession = Depends(get_db),
) -> Response:
    # Authorization is reserved for identity tokens.
    _check_scrape_token(x_metrics_token)
    await _refresh_approval_gauge(db)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
