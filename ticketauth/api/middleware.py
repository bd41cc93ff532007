"""Middleware for request logging, client context and security headers."""

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ticketauth.core.config import get_settings
from ticketauth.core.metrics import observe_http_request
from ticketauth.core.request_context import (
    client_context,
    new_request_id,
    request_id_context,
    resolve_client_ip,
)
from ticketauth.core.structured_logging import log_json

logger = logging.getLogger(__name__)
settings = get_settings()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add basic security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")

        if settings.environment == "production":
            forwarded_proto = request.headers.get("x-forwarded-proto")
            scheme = forwarded_proto or request.url.scheme
            if scheme == "https":
                response.headers.setdefault(
                    "Strict-Transport-Security",
                    "max-age=63072000; includeSubDomains",
                )

        return response


def _incoming_request_id(request: Request) -> str | None:
    candidate = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or ""
    ).strip()
    if candidate and len(candidate) <= 128 and "\n" not in candidate and "\r" not in candidate:
        return candidate
    return None


def _level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _caller_fields(request: Request) -> dict[str, object]:
    """Who made the request, as far as the access pipeline got."""
    fields: dict[str, object] = {}
    identity = getattr(request.state, "identity", None)
    if identity is not None:
        fields["subject_id"] = identity.subject_id
    denial_code = getattr(request.state, "gate_denial_code", None)
    if denial_code:
        fields["gate_denial_code"] = denial_code
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One structured log line and one metrics sample per request.

    Also publishes the correlation id, client IP and user agent into the
    request context, where the audit sink picks them up. The access pipeline
    shares `request.state`, so the line carries the verified subject and any
    approval gate denial code.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = _incoming_request_id(request) or new_request_id()
        request.state.request_id = request_id

        started = time.perf_counter()
        client_ip = resolve_client_ip(
            request.headers, request.client.host if request.client else None
        )
        user_agent = request.headers.get("User-Agent")

        with request_id_context(request_id), client_context(client_ip, user_agent):
            try:
                response = await call_next(request)
            except Exception as exc:
                log_json(
                    logger,
                    logging.ERROR,
                    "request_error",
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    client_ip=client_ip,
                    error=str(exc),
                    exception=exc.__class__.__name__,
                    **_caller_fields(request),
                )
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers.setdefault("X-Request-ID", request_id)

            route = request.scope.get("route")
            observe_http_request(
                method=request.method,
                route=getattr(route, "path", None) or "unmatched",
                status_code=response.status_code,
                duration_ms=elapsed_ms,
            )
            log_json(
                logger,
                _level_for_status(response.status_code),
                "request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(elapsed_ms, 2),
                client_ip=client_ip,
                **_caller_fields(request),
            )
            return response
