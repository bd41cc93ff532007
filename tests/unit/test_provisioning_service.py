"""Unit tests for first-seen-token account provisioning."""

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from ticketauth.core.security import VerifiedIdentity
from ticketauth.models.enums import ApprovalStatus, AuditAction
from ticketauth.services.provisioning_service import ProvisioningService
from tests.support import audit_records, create_account


@pytest.mark.asyncio
class TestProvisioning:
    async def test_unknown_caller_is_provisioned_approved(
        self, db: AsyncSession, audit, session_factory
    ):
        identity = VerifiedIdentity(subject_id=uuid4(), email="Legacy@Example.com", display_name="Leg Acy")

        account = await ProvisioningService(db, audit).provision_if_missing(identity)

        assert account.id == identity.subject_id
        assert account.email == "legacy@example.com"
        assert account.approval_status == ApprovalStatus.APPROVED
        records = await audit_records(session_factory, AuditAction.ACCOUNT_PROVISIONED)
        assert records[0].target_account_id == identity.subject_id

    async def test_existing_account_is_returned_untouched(
        self, db: AsyncSession, audit, session_factory
    ):
        pending = await create_account(db, "pending@test.com", approval_status=ApprovalStatus.PENDING)
        identity = VerifiedIdentity(subject_id=pending.id, email=pending.email)

        account = await ProvisioningService(db, audit).provision_if_missing(identity)

        assert account.approval_status == ApprovalStatus.PENDING
        assert await audit_records(session_factory, AuditAction.ACCOUNT_PROVISIONED) == []

    async def test_missing_email_claim_is_skipped(self, db: AsyncSession, audit):
        identity = VerifiedIdentity(subject_id=uuid4())
        assert await ProvisioningService(db, audit).provision_if_missing(identity) is None

    async def test_email_owned_by_other_account_is_skipped(self, db: AsyncSession, audit):
        await create_account(db, "owner@test.com")
        identity = VerifiedIdentity(subject_id=uuid4(), email="owner@test.com")
        assert await ProvisioningService(db, audit).provision_if_missing(identity) is None
