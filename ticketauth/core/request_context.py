"""Request/task context utilities.

Used for propagating a correlation/request ID into logs across API requests and
Celery worker tasks, and for carrying the caller's client IP and user agent to
the audit sink without threading them through every service signature.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from uuid import uuid4

UNKNOWN_CLIENT = "unknown"

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_client_ip_var: ContextVar[str | None] = ContextVar("client_ip", default=None)
_user_agent_var: ContextVar[str | None] = ContextVar("user_agent", default=None)


def get_request_id() -> str | None:
    """Get the current request/task correlation ID (if any)."""

    return _request_id_var.get()


def set_request_id(request_id: str | None) -> Token[str | None]:
    """Set the current request/task correlation ID and return the reset token."""

    return _request_id_var.set(request_id)


def reset_request_id(token: Token[str | None]) -> None:
    """Reset the correlation ID to the previous value using the token."""

    _request_id_var.reset(token)


def new_request_id() -> str:
    """Generate a new correlation ID."""

    return str(uuid4())


@contextmanager
def request_id_context(request_id: str | None):
    """Context manager that sets the correlation ID for the duration."""

    token = set_request_id(request_id)
    try:
        yield
    finally:
        reset_request_id(token)


def get_client_ip() -> str:
    return _client_ip_var.get() or UNKNOWN_CLIENT


def get_user_agent() -> str:
    return _user_agent_var.get() or UNKNOWN_CLIENT


@contextmanager
def client_context(client_ip: str | None, user_agent: str | None):
    """Context manager that exposes the caller's IP and user agent for auditing."""

    ip_token = _client_ip_var.set(client_ip)
    ua_token = _user_agent_var.set(user_agent)
    try:
        yield
    finally:
        _user_agent_var.reset(ua_token)
        _client_ip_var.reset(ip_token)


def resolve_client_ip(headers, peer_host: str | None) -> str:
    """Resolve the originating client IP.

    Priority: first hop of X-Forwarded-For, then X-Real-IP, then the socket peer.
    """
    forwarded_for = headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return peer_host or UNKNOWN_CLIENT
