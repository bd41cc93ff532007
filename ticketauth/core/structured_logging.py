"""Small structured logging helper.

Operational events are logged as single-line JSON strings so any collector can
pick them up; alerting keys off the stable `event` name.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from ticketauth.core.request_context import get_request_id


def configure_logging(level: str = "INFO") -> None:
    """Install a plain message formatter on the root logger (idempotent)."""

    root = logging.getLogger()
    root.setLevel(level.upper())
    if not any(getattr(h, "_ticketauth", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))
        handler._ticketauth = True
        root.addHandler(handler)


def log_json(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit a single JSON log line with optional request/task correlation ID."""

    payload: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "event": event,
        "level": logging.getLevelName(level),
    }
    request_id = get_request_id()
    if request_id:
        payload["request_id"] = request_id

    payload.update(fields)
    logger.log(level, json.dumps(payload, default=str))
