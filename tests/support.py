"""Test doubles, token minting and data factories shared by the test suite."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import DirectoryOperationError
from ticketauth.models.account import Account
from ticketauth.models.audit_record import AuditRecord
from ticketauth.models.enums import AppRole, ApprovalStatus, AuditAction, InviteCodeStatus
from ticketauth.models.event import Event, EventStaffGrant
from ticketauth.models.invite_code import InviteCode

TEST_TOKEN_SECRET = "test-token-secret-that-is-at-least-32-bytes"
TEST_PASSWORD = "TestPass123!"


class FakeDirectory:
    """In-memory identity directory with per-operation failure injection."""

    def __init__(self):
        self.identities: dict[UUID, dict] = {}
        self.roles: dict[UUID, set[str]] = {}
        self.enabled: dict[UUID, bool] = {}
        self.fail_on: set[str] = set()
        self.realm_roles: set[str] = {role.value for role in AppRole}
        self.calls: list[str] = []

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise DirectoryOperationError(f"Directory {operation} failed (injected)")

    def add_identity(
        self,
        email: str,
        roles: Iterable[str] = (),
        identity_id: UUID | None = None,
    ) -> UUID:
        identity_id = identity_id or uuid4()
        self.identities[identity_id] = {"email": email.lower(), "display_name": None}
        self.roles[identity_id] = {r.upper() for r in roles}
        self.enabled[identity_id] = True
        return identity_id

    async def create_identity(self, email: str, password: str, display_name: str | None) -> UUID:
        self._call("create_identity")
        identity_id = self.add_identity(email)
        self.identities[identity_id]["display_name"] = display_name
        return identity_id

    async def delete_identity(self, identity_id: UUID) -> None:
        self._call("delete_identity")
        self.identities.pop(identity_id, None)
        self.roles.pop(identity_id, None)
        self.enabled.pop(identity_id, None)

    async def assign_role(self, identity_id: UUID, role: str) -> None:
        self._call("assign_role")
        self.roles.setdefault(identity_id, set()).add(role.upper())

    async def revoke_role(self, identity_id: UUID, role: str) -> None:
        self._call("revoke_role")
        self.roles.get(identity_id, set()).discard(role.upper())

    async def get_roles(self, identity_id: UUID) -> set[str]:
        self._call("get_roles")
        return set(self.roles.get(identity_id, set()))

    async def has_role(self, identity_id: UUID, role: str) -> bool:
        self._call("has_role")
        return role.upper() in self.roles.get(identity_id, set())

    async def find_id_by_email(self, email: str) -> UUID | None:
        self._call("find_id_by_email")
        wanted = email.strip().lower()
        for identity_id, data in self.identities.items():
            if data["email"] == wanted:
                return identity_id
        return None

    async def set_enabled(self, identity_id: UUID, enabled: bool) -> None:
        self._call("set_enabled")
        self.enabled[identity_id] = enabled

    async def list_available_roles(self) -> set[str]:
        self._call("list_available_roles")
        return set(self.realm_roles)


def make_token(
    subject_id: UUID,
    *,
    email: str | None = None,
    roles: Iterable[str] = (),
    expires_in: int = 3600,
    secret: str = TEST_TOKEN_SECRET,
    **extra_claims,
) -> str:
    now = datetime.now(UTC)
    claims = {
        "sub": str(subject_id),
        "realm_access": {"roles": list(roles)},
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    if email is not None:
        claims["email"] = email
        claims["preferred_username"] = email
    claims.update(extra_claims)
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(account: Account, roles: Iterable[str] = ()) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(account.id, email=account.email, roles=roles)}"}


async def create_account(
    db: AsyncSession,
    email: str,
    *,
    approval_status: ApprovalStatus | None = ApprovalStatus.APPROVED,
    account_id: UUID | None = None,
    display_name: str | None = None,
    rejection_reason: str | None = None,
) -> Account:
    account = Account(
        id=account_id or uuid4(),
        email=email,
        display_name=display_name or email.split("@", 1)[0],
        approval_status=approval_status,
        rejection_reason=rejection_reason,
    )
    db.add(account)
    await db.commit()
    return account


async def create_event(db: AsyncSession, organizer: Account, name: str = "Spring Festival") -> Event:
    event = Event(name=name, organizer_id=organizer.id)
    db.add(event)
    await db.commit()
    return event


async def create_staff_grant(db: AsyncSession, event: Event, account: Account) -> EventStaffGrant:
    grant = EventStaffGrant(event_id=event.id, account_id=account.id, granted_at=datetime.now(UTC))
    db.add(grant)
    await db.commit()
    return grant


async def create_invite(
    db: AsyncSession,
    creator: Account,
    role: AppRole,
    *,
    event: Event | None = None,
    code: str | None = None,
    expires_at: datetime | None = None,
    status: InviteCodeStatus = InviteCodeStatus.PENDING,
) -> InviteCode:
    invite = InviteCode(
        code=code or f"TEST-{uuid4().hex[:4].upper()}-{uuid4().hex[:4].upper()}",
        role=role,
        target_event_id=event.id if event else None,
        status=status,
        created_by_account_id=creator.id,
        expires_at=expires_at or datetime.now(UTC) + timedelta(hours=24),
    )
    db.add(invite)
    await db.commit()
    return invite


async def audit_records(
    session_factory,
    action: AuditAction | None = None,
) -> list[AuditRecord]:
    """Audit records in write order, read through a fresh session."""
    query = select(AuditRecord).order_by(AuditRecord.created_at.asc())
    if action is not None:
        query = query.where(AuditRecord.action == action)
    async with session_factory() as session:
        result = await session.execute(query)
        return list(result.scalars().all())


async def audit_actions(session_factory) -> list[AuditAction]:
    return [AuditAction(r.action) for r in await audit_records(session_factory)]
