"""Enumerations for roles, lifecycle states and audit actions."""

from enum import Enum


class AppRole(str, Enum):
    """Directory-issued application roles.

    A role is a coarse capability: necessary, never sufficient, for acting on a
    specific event. Event access is decided by ownership and staff grants.
    """

    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    STAFF = "STAFF"
    ATTENDEE = "ATTENDEE"

    @property
    def is_event_scoped(self) -> bool:
        """STAFF codes and grants always name the event they apply to."""
        return self is AppRole.STAFF

    @property
    def is_highest_privilege(self) -> bool:
        return self is AppRole.ADMIN

    @classmethod
    def parse(cls, value: str) -> "AppRole":
        """Parse a role name case-insensitively.

        Raises:
            ValueError: If the name is not a known role
        """
        try:
            return cls(value.strip().upper())
        except ValueError:
            allowed = ", ".join(r.value for r in cls)
            raise ValueError(f"Unknown role '{value}'. Allowed roles: {allowed}") from None


DEFAULT_ROLE = AppRole.ATTENDEE
HIGHEST_PRIVILEGE_ROLE = AppRole.ADMIN


class ApprovalStatus(str, Enum):
    """Business approval state of a local account.

    PENDING -> APPROVED and PENDING -> REJECTED are the only transitions.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class InviteCodeStatus(str, Enum):
    """Invite code lifecycle. Every status other than PENDING is terminal."""

    PENDING = "PENDING"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class AuditAction(str, Enum):
    """Closed set of audited actions."""

    # Registration
    REGISTRATION_ATTEMPT = "REGISTRATION_ATTEMPT"
    REGISTRATION_SUCCESS = "REGISTRATION_SUCCESS"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"

    # Approval
    USER_APPROVED = "USER_APPROVED"
    USER_REJECTED = "USER_REJECTED"
    APPROVAL_GATE_VIOLATION = "APPROVAL_GATE_VIOLATION"
    LEGACY_APPROVAL_MIGRATED = "LEGACY_APPROVAL_MIGRATED"
    ACCOUNT_PROVISIONED = "ACCOUNT_PROVISIONED"

    # Roles and staff
    ROLE_ASSIGNED = "ROLE_ASSIGNED"
    ROLE_REVOKED = "ROLE_REVOKED"
    ADMIN_ROLE_GRANTED_VIA_INVITE = "ADMIN_ROLE_GRANTED_VIA_INVITE"
    STAFF_ASSIGNED = "STAFF_ASSIGNED"
    STAFF_REMOVED = "STAFF_REMOVED"

    # Invite codes
    INVITE_CREATED = "INVITE_CREATED"
    INVITE_REDEEMED = "INVITE_REDEEMED"
    INVITE_REVOKED = "INVITE_REVOKED"
    INVITE_CODES_EXPIRED = "INVITE_CODES_EXPIRED"
    FAILED_INVITE_REDEMPTION = "FAILED_INVITE_REDEMPTION"
