"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

HTTP_REQUESTS_TOTAL = Counter(
    "ticketauth_http_requests_total",
    "Total number of HTTP requests.",
    ["method", "route", "status"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "ticketauth_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    ["method", "route", "status"],
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
    ),
)

APPROVAL_GATE_DENIALS_TOTAL = Counter(
    "ticketauth_approval_gate_denials_total",
    "Requests blocked by the approval gate.",
    ["code"],
)

INVITE_REDEMPTIONS_TOTAL = Counter(
    "ticketauth_invite_redemptions_total",
    "Invite code redemption attempts by outcome.",
    ["outcome"],
)

REGISTRATIONS_TOTAL = Counter(
    "ticketauth_registrations_total",
    "Self-service registrations by outcome.",
    ["outcome"],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "ticketauth_audit_write_failures_total",
    "Audit records that could not be persisted.",
)

ACCOUNTS_BY_APPROVAL_STATUS = Gauge(
    "ticketauth_accounts_by_approval_status",
    "Local accounts per approval status, refreshed on scrape.",
    ["approval_status"],
)


def observe_http_request(
    *,
    method: str,
    route: str,
    status_code: int,
    duration_ms: float,
) -> None:
    status = str(status_code)
    HTTP_REQUESTS_TOTAL.labels(method=method, route=route, status=status).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(
        method=method, route=route, status=status
    ).observe(duration_ms / 1000.0)
