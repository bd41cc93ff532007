"""Domain exception taxonomy.

Every error the core raises maps to exactly one HTTP status; the translation
happens once, in `ticketauth.api.errors`.
"""

from __future__ import annotations

from datetime import datetime


class TicketAuthError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TicketAuthError):
    status_code = 404
    error_code = "not_found"


class AccountNotFoundError(NotFoundError):
    error_code = "account_not_found"

    def __init__(self, account_id):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class EventNotFoundError(NotFoundError):
    error_code = "event_not_found"

    def __init__(self, event_id):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class InviteCodeNotFoundError(NotFoundError):
    error_code = "invite_code_not_found"

    def __init__(self, message: str = "Invite code not found"):
        super().__init__(message)


class AccessDeniedError(TicketAuthError):
    status_code = 403
    error_code = "access_denied"


class InvalidInputError(TicketAuthError):
    status_code = 400
    error_code = "invalid_input"


class InvalidBusinessStateError(TicketAuthError):
    status_code = 409
    error_code = "invalid_state"


class InvalidApprovalStateError(InvalidBusinessStateError):
    error_code = "invalid_approval_state"


class InvalidInviteCodeError(InvalidBusinessStateError):
    """An invite code exists but cannot be used.

    `reason` is one of already_redeemed, expired, revoked, not_pending. It only
    shapes the message; callers must not branch on it.
    """

    error_code = "invalid_invite_code"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    @classmethod
    def already_redeemed(
        cls, redeemed_by=None, redeemed_at: datetime | None = None
    ) -> InvalidInviteCodeError:
        message = "Invite code has already been redeemed"
        if redeemed_by is not None:
            message += f" by {redeemed_by}"
        if redeemed_at is not None:
            message += f" at {redeemed_at.isoformat()}"
        return cls(message, "already_redeemed")

    @classmethod
    def expired(cls, expires_at: datetime | None = None) -> InvalidInviteCodeError:
        message = "Invite code has expired"
        if expires_at is not None:
            message += f" at {expires_at.isoformat()}"
        return cls(message, "expired")

    @classmethod
    def revoked(cls, reason: str | None = None) -> InvalidInviteCodeError:
        message = "Invite code has been revoked"
        if reason:
            message += f": {reason}"
        return cls(message, "revoked")

    @classmethod
    def not_pending(cls, status: str) -> InvalidInviteCodeError:
        return cls(f"Only pending invite codes can be revoked (current status: {status})", "not_pending")


class EmailAlreadyInUseError(InvalidBusinessStateError):
    error_code = "email_already_in_use"

    def __init__(self, email: str):
        super().__init__(f"Email is already registered: {email}")
        self.email = email


class InfrastructureError(TicketAuthError):
    status_code = 500
    error_code = "infrastructure_error"


class DirectoryOperationError(InfrastructureError):
    error_code = "directory_error"


class PersistenceError(InfrastructureError):
    error_code = "persistence_error"


class InviteCodeGenerationError(InfrastructureError):
    """Could not find an unused code; safe for the client to retry."""

    error_code = "invite_code_generation_failed"
    retryable = True


class SystemAccountMissingError(InfrastructureError):
    error_code = "system_account_missing"


class ApprovalGateDenied(TicketAuthError):
    """Raised by the approval gate; rendered as `{code, message, status, timestamp}`."""

    status_code = 403
    error_code = "approval_gate_denied"

    def __init__(self, code: str, message: str, rejection_reason: str | None = None):
        super().__init__(message)
        self.code = code
        self.rejection_reason = rejection_reason
