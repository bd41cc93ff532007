"""Unit tests for the invite code lifecycle."""

import re
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.exceptions import (
    AccessDeniedError,
    DirectoryOperationError,
    EventNotFoundError,
    InvalidInputError,
    InvalidInviteCodeError,
    InviteCodeGenerationError,
    InviteCodeNotFoundError,
    PersistenceError,
)
from ticketauth.models.account import Account
from ticketauth.models.enums import AppRole, AuditAction, InviteCodeStatus
from ticketauth.models.event import Event, EventStaffGrant
from ticketauth.models.invite_code import InviteCode
from ticketauth.services import invite_code_service
from ticketauth.services.invite_code_service import (
    CODE_ALPHABET,
    MAX_GENERATION_ATTEMPTS,
    InviteCodeService,
    generate_code,
    normalize_code,
)
from tests.support import audit_actions, audit_records, create_account, create_event, create_invite

CODE_PATTERN = re.compile(r"^[A-Z2-9]{4}-[A-Z2-9]{4}-[A-Z2-9]{4}-[A-Z2-9]{4}$")


async def _status(session_factory, invite_id) -> InviteCodeStatus:
    async with session_factory() as session:
        value = await session.scalar(select(InviteCode.status).where(InviteCode.id == invite_id))
    return InviteCodeStatus(value)


class TestCodeFormat:
    def test_generated_codes_are_grouped(self):
        code = generate_code()
        assert CODE_PATTERN.match(code)

    def test_ambiguous_characters_are_never_used(self):
        for _ in range(50):
            raw = generate_code().replace("-", "")
            assert set(raw) <= set(CODE_ALPHABET)
            assert not set(raw) & {"0", "O", "1", "I"}

    def test_normalize_code(self):
        assert normalize_code("  abcd-efgh ") == "ABCD-EFGH"


@pytest.mark.asyncio
class TestGenerate:
    async def test_staff_code_for_event(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, event: Event
    ):
        service = InviteCodeService(db, directory, audit)

        invite = await service.generate(admin_account.id, AppRole.STAFF, event.id)

        assert CODE_PATTERN.match(invite.code)
        assert invite.status == InviteCodeStatus.PENDING
        assert invite.target_event_id == event.id
        ttl = invite.expires_at - datetime.now(UTC)
        assert timedelta(hours=71) < ttl <= timedelta(hours=72)

        records = await audit_records(session_factory, AuditAction.INVITE_CREATED)
        assert len(records) == 1
        assert records[0].actor_account_id == admin_account.id
        assert records[0].event_id == event.id

    async def test_staff_code_requires_event(self, db: AsyncSession, directory, audit, admin_account: Account):
        service = InviteCodeService(db, directory, audit)
        with pytest.raises(InvalidInputError):
            await service.generate(admin_account.id, AppRole.STAFF)

    async def test_staff_code_for_unknown_event(self, db: AsyncSession, directory, audit, admin_account: Account):
        service = InviteCodeService(db, directory, audit)
        with pytest.raises(EventNotFoundError):
            await service.generate(admin_account.id, AppRole.STAFF, uuid4())

    async def test_non_staff_code_rejects_event(
        self, db: AsyncSession, directory, audit, admin_account: Account, event: Event
    ):
        service = InviteCodeService(db, directory, audit)
        with pytest.raises(InvalidInputError):
            await service.generate(admin_account.id, AppRole.ORGANIZER, event.id)

    @pytest.mark.parametrize("ttl_hours", [0, -1, 721])
    async def test_ttl_out_of_range(self, db: AsyncSession, directory, audit, admin_account: Account, ttl_hours):
        service = InviteCodeService(db, directory, audit)
        with pytest.raises(InvalidInputError):
            await service.generate(admin_account.id, AppRole.ATTENDEE, ttl_hours=ttl_hours)

    async def test_collision_is_retried(
        self, db: AsyncSession, directory, audit, admin_account: Account, monkeypatch
    ):
        taken = await create_invite(db, admin_account, AppRole.ATTENDEE, code="AAAA-BBBB-CCCC-DDDD")
        candidates = iter([taken.code, "EEEE-FFFF-GGGG-HHHH"])
        monkeypatch.setattr(invite_code_service, "generate_code", lambda: next(candidates))
        service = InviteCodeService(db, directory, audit)

        invite = await service.generate(admin_account.id, AppRole.ATTENDEE)

        assert invite.code == "EEEE-FFFF-GGGG-HHHH"

    async def test_exhausted_attempts_raise_retryable_error(
        self, db: AsyncSession, directory, audit, admin_account: Account, monkeypatch
    ):
        taken = await create_invite(db, admin_account, AppRole.ATTENDEE, code="AAAA-BBBB-CCCC-DDDD")
        calls = []

        def always_taken():
            calls.append(1)
            return taken.code

        monkeypatch.setattr(invite_code_service, "generate_code", always_taken)
        service = InviteCodeService(db, directory, audit)

        with pytest.raises(InviteCodeGenerationError) as exc_info:
            await service.generate(admin_account.id, AppRole.ATTENDEE)

        assert exc_info.value.retryable is True
        assert len(calls) == MAX_GENERATION_ATTEMPTS


@pytest.mark.asyncio
class TestIssuancePolicy:
    async def test_admin_may_issue_any_role(self, db: AsyncSession, directory, audit, admin_account: Account):
        service = InviteCodeService(db, directory, audit)
        invite = await service.issue(admin_account.id, {"ADMIN"}, AppRole.ADMIN, None)
        assert invite.role == AppRole.ADMIN

    async def test_organizer_may_issue_staff_for_own_event(
        self, db: AsyncSession, directory, audit, organizer_account: Account, event: Event
    ):
        service = InviteCodeService(db, directory, audit)
        invite = await service.issue(organizer_account.id, {"ORGANIZER"}, AppRole.STAFF, event.id)
        assert invite.target_event_id == event.id

    async def test_organizer_may_not_issue_other_roles(
        self, db: AsyncSession, directory, audit, organizer_account: Account
    ):
        service = InviteCodeService(db, directory, audit)
        with pytest.raises(AccessDeniedError):
            await service.issue(organizer_account.id, {"ORGANIZER"}, AppRole.ADMIN, None)

    async def test_organizer_may_not_issue_for_foreign_event(
        self, db: AsyncSession, directory, audit, organizer_account: Account
    ):
        other = await create_account(db, "other@test.com")
        foreign_event = await create_event(db, other, "Foreign Event")
        service = InviteCodeService(db, directory, audit)

        with pytest.raises(AccessDeniedError):
            await service.issue(organizer_account.id, {"ORGANIZER"}, AppRole.STAFF, foreign_event.id)

    async def test_attendee_may_not_issue(self, db: AsyncSession, directory, audit, attendee_account: Account):
        service = InviteCodeService(db, directory, audit)
        with pytest.raises(AccessDeniedError):
            await service.issue(attendee_account.id, {"ATTENDEE"}, AppRole.ATTENDEE, None)


@pytest.mark.asyncio
class TestRedeem:
    async def test_staff_code_grants_role_and_event_access(
        self,
        db: AsyncSession,
        directory,
        audit,
        session_factory,
        admin_account: Account,
        attendee_account: Account,
        event: Event,
    ):
        invite = await create_invite(db, admin_account, AppRole.STAFF, event=event)
        service = InviteCodeService(db, directory, audit)

        result = await service.redeem(attendee_account.id, invite.code.lower())

        assert result.role == AppRole.STAFF
        assert result.event_id == event.id
        assert result.event_name == event.name
        assert result.current_roles == ["ATTENDEE", "STAFF"]
        assert "STAFF" in directory.roles[attendee_account.id]
        assert await db.get(EventStaffGrant, (event.id, attendee_account.id)) is not None
        assert await _status(session_factory, invite.id) == InviteCodeStatus.REDEEMED
        assert AuditAction.INVITE_REDEEMED in await audit_actions(session_factory)

    async def test_second_redemption_is_rejected(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, attendee_account: Account
    ):
        second_user = await create_account(db, "second@test.com")
        invite = await create_invite(db, admin_account, AppRole.ORGANIZER)
        service = InviteCodeService(db, directory, audit)

        await service.redeem(attendee_account.id, invite.code)
        with pytest.raises(InvalidInviteCodeError) as exc_info:
            await service.redeem(second_user.id, invite.code)

        assert exc_info.value.reason == "already_redeemed"
        assert "ORGANIZER" not in directory.roles.get(second_user.id, set())
        failures = await audit_records(session_factory, AuditAction.FAILED_INVITE_REDEMPTION)
        assert len(failures) == 1
        assert failures[0].actor_account_id == second_user.id
        assert "already_redeemed" in failures[0].details

    async def test_unknown_code(self, db: AsyncSession, directory, audit, session_factory, attendee_account: Account):
        service = InviteCodeService(db, directory, audit)

        with pytest.raises(InviteCodeNotFoundError):
            await service.redeem(attendee_account.id, "NOPE-NOPE-NOPE-NOPE")

        failures = await audit_records(session_factory, AuditAction.FAILED_INVITE_REDEMPTION)
        assert failures[0].details == "reason=CODE_NOT_FOUND"

    async def test_overdue_code_is_expired_and_persisted(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, attendee_account: Account
    ):
        invite = await create_invite(
            db,
            admin_account,
            AppRole.ATTENDEE,
            expires_at=datetime.now(UTC) - timedelta(seconds=1),
        )
        service = InviteCodeService(db, directory, audit)

        with pytest.raises(InvalidInviteCodeError) as exc_info:
            await service.redeem(attendee_account.id, invite.code)

        assert exc_info.value.reason == "expired"
        assert await _status(session_factory, invite.id) == InviteCodeStatus.EXPIRED
        assert directory.calls == []

    async def test_code_is_valid_until_its_expiry_instant(
        self, db: AsyncSession, directory, audit, admin_account: Account
    ):
        expires_at = datetime.now(UTC) + timedelta(minutes=5)
        invite = await create_invite(db, admin_account, AppRole.ATTENDEE, expires_at=expires_at)
        service = InviteCodeService(db, directory, audit)

        validated = await service.validate_for_use(invite.code, now=expires_at)
        assert validated.status == InviteCodeStatus.PENDING

        with pytest.raises(InvalidInviteCodeError):
            await service.validate_for_use(invite.code, now=expires_at + timedelta(microseconds=1))

    async def test_revoked_code(
        self, db: AsyncSession, directory, audit, admin_account: Account, attendee_account: Account
    ):
        invite = await create_invite(db, admin_account, AppRole.ATTENDEE, status=InviteCodeStatus.REVOKED)
        service = InviteCodeService(db, directory, audit)

        with pytest.raises(InvalidInviteCodeError) as exc_info:
            await service.redeem(attendee_account.id, invite.code)
        assert exc_info.value.reason == "revoked"

    async def test_claim_loses_to_concurrent_redeemer(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, attendee_account: Account
    ):
        invite = await create_invite(db, admin_account, AppRole.ATTENDEE)
        service = InviteCodeService(db, directory, audit)
        validated = await service.validate_for_use(invite.code)
        winner = uuid4()
        now = datetime.now(UTC)

        # Another request claims the code between validation and claim.
        async with session_factory() as other:
            await other.execute(
                update(InviteCode)
                .where(InviteCode.id == invite.id)
                .values(status=InviteCodeStatus.REDEEMED, redeemed_by_account_id=winner, redeemed_at=now)
            )
            await other.commit()

        with pytest.raises(InvalidInviteCodeError) as exc_info:
            await service.claim(validated, attendee_account.id, now)
        await db.rollback()

        assert exc_info.value.reason == "already_redeemed"
        async with session_factory() as session:
            persisted = await session.get(InviteCode, invite.id)
        assert persisted.redeemed_by_account_id == winner

    async def test_directory_failure_leaves_code_pending(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, attendee_account: Account, event: Event
    ):
        invite = await create_invite(db, admin_account, AppRole.STAFF, event=event)
        directory.fail_on.add("assign_role")
        service = InviteCodeService(db, directory, audit)

        with pytest.raises(DirectoryOperationError):
            await service.redeem(attendee_account.id, invite.code)

        assert await _status(session_factory, invite.id) == InviteCodeStatus.PENDING
        async with session_factory() as session:
            assert await session.get(EventStaffGrant, (event.id, attendee_account.id)) is None
        failures = await audit_records(session_factory, AuditAction.FAILED_INVITE_REDEMPTION)
        assert failures[0].details == "reason=ROLE_ASSIGNMENT_FAILED"

    async def test_commit_failure_revokes_directory_role(
        self,
        db: AsyncSession,
        directory,
        audit,
        session_factory,
        admin_account: Account,
        attendee_account: Account,
        monkeypatch,
    ):
        invite = await create_invite(db, admin_account, AppRole.ORGANIZER)
        service = InviteCodeService(db, directory, audit)

        async def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)

        with pytest.raises(PersistenceError):
            await service.redeem(attendee_account.id, invite.code)

        assert "ORGANIZER" not in directory.roles[attendee_account.id]
        assert "revoke_role" in directory.calls
        assert await _status(session_factory, invite.id) == InviteCodeStatus.PENDING
        actions = await audit_actions(session_factory)
        assert AuditAction.ROLE_REVOKED in actions
        assert AuditAction.INVITE_REDEEMED not in actions

    async def test_admin_grant_is_audited_after_redemption(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, attendee_account: Account
    ):
        invite = await create_invite(db, admin_account, AppRole.ADMIN)
        service = InviteCodeService(db, directory, audit)

        await service.redeem(attendee_account.id, invite.code)

        actions = await audit_actions(session_factory)
        assert actions.index(AuditAction.INVITE_REDEEMED) < actions.index(
            AuditAction.ADMIN_ROLE_GRANTED_VIA_INVITE
        )
        high = await audit_records(session_factory, AuditAction.ADMIN_ROLE_GRANTED_VIA_INVITE)
        assert "severity=HIGH" in high[0].details

    async def test_roles_unknown_when_directory_read_fails(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account, attendee_account: Account
    ):
        invite = await create_invite(db, admin_account, AppRole.ORGANIZER)
        directory.fail_on.add("get_roles")
        service = InviteCodeService(db, directory, audit)

        result = await service.redeem(attendee_account.id, invite.code)

        assert result.current_roles is None
        assert await _status(session_factory, invite.id) == InviteCodeStatus.REDEEMED


@pytest.mark.asyncio
class TestRevokeAndExpire:
    async def test_revoke_pending_code(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account
    ):
        invite = await create_invite(db, admin_account, AppRole.ATTENDEE)
        service = InviteCodeService(db, directory, audit)

        revoked = await service.revoke(admin_account.id, invite.id, "sent to wrong person")

        assert revoked.status == InviteCodeStatus.REVOKED
        assert revoked.revoked_reason == "sent to wrong person"
        assert await _status(session_factory, invite.id) == InviteCodeStatus.REVOKED

        with pytest.raises(InvalidInviteCodeError) as exc_info:
            await service.revoke(admin_account.id, invite.id, None)
        assert exc_info.value.reason == "not_pending"

    async def test_mark_expired_codes_is_idempotent(
        self, db: AsyncSession, directory, audit, session_factory, admin_account: Account
    ):
        past = datetime.now(UTC) - timedelta(hours=1)
        overdue = await create_invite(db, admin_account, AppRole.ATTENDEE, expires_at=past)
        await create_invite(db, admin_account, AppRole.ATTENDEE, expires_at=past, status=InviteCodeStatus.REDEEMED)
        fresh = await create_invite(db, admin_account, AppRole.ATTENDEE)
        service = InviteCodeService(db, directory, audit)

        assert await service.mark_expired_codes() == 1
        assert await service.mark_expired_codes() == 0

        assert await _status(session_factory, overdue.id) == InviteCodeStatus.EXPIRED
        assert await _status(session_factory, fresh.id) == InviteCodeStatus.PENDING

    async def test_get_expires_lazily(self, db: AsyncSession, directory, audit, session_factory, admin_account: Account):
        invite = await create_invite(
            db, admin_account, AppRole.ATTENDEE, expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )
        service = InviteCodeService(db, directory, audit)

        fetched = await service.get(invite.id)

        assert fetched.status == InviteCodeStatus.EXPIRED
        assert await _status(session_factory, invite.id) == InviteCodeStatus.EXPIRED

    async def test_listing(
        self, db: AsyncSession, directory, audit, admin_account: Account, organizer_account: Account, event: Event
    ):
        await create_invite(db, admin_account, AppRole.ATTENDEE)
        await create_invite(db, organizer_account, AppRole.STAFF, event=event)
        service = InviteCodeService(db, directory, audit)

        _, total = await service.list_all()
        assert total == 2

        mine, total = await service.list_by_creator(organizer_account.id)
        assert total == 1
        assert mine[0].target_event.name == event.name

        for_event, total = await service.list_by_event(event.id)
        assert total == 1

    async def test_visibility(
        self, db: AsyncSession, directory, audit, admin_account: Account, organizer_account: Account, attendee_account: Account, event: Event
    ):
        invite = await create_invite(db, admin_account, AppRole.STAFF, event=event)
        service = InviteCodeService(db, directory, audit)

        await service.ensure_can_view(admin_account.id, {"ADMIN"}, invite)
        await service.ensure_can_view(organizer_account.id, {"ORGANIZER"}, invite)
        with pytest.raises(AccessDeniedError):
            await service.ensure_can_view(attendee_account.id, {"ATTENDEE"}, invite)
