"""SQLAlchemy models."""

from ticketauth.models.account import Account
from ticketauth.models.audit_record import AuditRecord
from ticketauth.models.base import Base, BaseModel
from ticketauth.models.enums import (
    DEFAULT_ROLE,
    HIGHEST_PRIVILEGE_ROLE,
    AppRole,
    ApprovalStatus,
    AuditAction,
    InviteCodeStatus,
)
from ticketauth.models.event import Event, EventStaffGrant
from ticketauth.models.invite_code import InviteCode

__all__ = [
    "Base",
    "BaseModel",
    "AppRole",
    "ApprovalStatus",
    "AuditAction",
    "InviteCodeStatus",
    "DEFAULT_ROLE",
    "HIGHEST_PRIVILEGE_ROLE",
    "Account",
    "Event",
    "EventStaffGrant",
    "InviteCode",
    "AuditRecord",
]
