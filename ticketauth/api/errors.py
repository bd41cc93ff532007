"""Translation of domain exceptions into HTTP responses."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ticketauth.core.config import get_settings
from ticketauth.core.exceptions import ApprovalGateDenied, TicketAuthError
from ticketauth.core.structured_logging import log_json
from ticketauth.schemas.errors import ApprovalDenialResponse, ErrorResponse

logger = logging.getLogger(__name__)

MAX_CLIENT_MESSAGE_LENGTH = 200
GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."

_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b"
)
_PY_FRAME_RE = re.compile(r'File "[^"]*", line \d+(?:, in [\w<>.]+)?')
_CALL_FRAME_RE = re.compile(r"\bat [\w$]+(?:\.[\w$<>]+)+\([^)]*\)")
_SQL_RE = re.compile(
    r"\b(?:SELECT\b.+?\bFROM|INSERT\s+INTO|UPDATE\b.+?\bSET|DELETE\s+FROM)\b[^\n]*",
    re.IGNORECASE | re.DOTALL,
)
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_message(message: str) -> str:
    """Strip identifiers, stack fragments and raw SQL from a client-facing message."""
    if not message:
        return message
    text = _SQL_RE.sub("database query", message)
    text = _PY_FRAME_RE.sub("", text)
    text = _CALL_FRAME_RE.sub("", text)
    text = _UUID_RE.sub("[id]", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) > MAX_CLIENT_MESSAGE_LENGTH:
        text = text[: MAX_CLIENT_MESSAGE_LENGTH - 3] + "..."
    return text


def client_message(message: str) -> str:
    if get_settings().environment == "production":
        return sanitize_message(message)
    return message


def _now() -> str:
    return datetime.now(UTC).isoformat()


async def ticketauth_error_handler(request: Request, exc: TicketAuthError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    log_json(
        logger,
        level,
        "domain_error",
        error=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        path=request.url.path,
        exception=exc.__class__.__name__,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.error_code,
            message=client_message(exc.message),
            status=exc.status_code,
            timestamp=_now(),
            path=request.url.path,
        ).model_dump(),
    )


async def approval_gate_denied_handler(request: Request, exc: ApprovalGateDenied) -> JSONResponse:
    content = ApprovalDenialResponse(
        code=exc.code,
        message=client_message(exc.message),
        status=exc.status_code,
        timestamp=_now(),
    )
    return JSONResponse(status_code=exc.status_code, content=content.model_dump())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_json(
        logger,
        logging.ERROR,
        "unhandled_error",
        path=request.url.path,
        error=str(exc),
        exception=exc.__class__.__name__,
    )
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            message=GENERIC_ERROR_MESSAGE,
            status=500,
            timestamp=_now(),
            path=request.url.path,
        ).model_dump(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette resolves handlers by MRO, so the gate handler wins for its subclass.
    app.add_exception_handler(ApprovalGateDenied, approval_gate_denied_handler)
    app.add_exception_handler(TicketAuthError, ticketauth_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
