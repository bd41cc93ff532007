"""Create ticketauth tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

SYSTEM_ACCOUNT_ID = '00000000-0000-0000-0000-000000000000'
SYSTEM_ACCOUNT_EMAIL = 'system@ticketauth.local'


def upgrade() -> None:
    """Create account, event, invite code and audit tables."""
    # Create accounts table
    op.create_table(
        'accounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        # NULL marks accounts created before approval existed; read as APPROVED.
        sa.Column('approval_status', sa.String(8), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by_account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('rejection_reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint(
            "approval_status IS NULL OR approval_status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name='account_approval_status_valid',
        ),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)
    op.create_index('ix_accounts_approval_status', 'accounts', ['approval_status'])

    # Create events table
    op.create_table(
        'events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('organizer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_events_organizer_id', 'events', ['organizer_id'])

    # Create event_staff table
    op.create_table(
        'event_staff',
        sa.Column('event_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('events.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('granted_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('granted_by_account_id', postgresql.UUID(as_uuid=True), nullable=True),
    )
    op.create_index('ix_event_staff_account_id', 'event_staff', ['account_id'])

    # Create invite_codes table
    op.create_table(
        'invite_codes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('code', sa.String(32), nullable=False),
        sa.Column('role', sa.String(9), nullable=False),
        sa.Column('target_event_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('events.id', ondelete='CASCADE'), nullable=True),
        sa.Column('status', sa.String(8), nullable=False, server_default='PENDING'),
        sa.Column('created_by_account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('redeemed_by_account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint("role IN ('ADMIN', 'ORGANIZER', 'STAFF', 'ATTENDEE')", name='invite_code_role_valid'),
        sa.CheckConstraint(
            "status IN ('PENDING', 'REDEEMED', 'EXPIRED', 'REVOKED')",
            name='invite_code_status_valid',
        ),
        sa.CheckConstraint(
            "role <> 'STAFF' OR target_event_id IS NOT NULL",
            name='invite_code_staff_requires_event',
        ),
    )
    op.create_index('ix_invite_codes_code', 'invite_codes', ['code'], unique=True)
    op.create_index('ix_invite_codes_target_event_id', 'invite_codes', ['target_event_id'])
    op.create_index('ix_invite_codes_created_by_account_id', 'invite_codes', ['created_by_account_id'])
    op.create_index('ix_invite_codes_status_expires_at', 'invite_codes', ['status', 'expires_at'])

    # Create audit_records table
    op.create_table(
        'audit_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('action', sa.String(40), nullable=False),
        # Not a foreign key: records outlive the accounts they mention.
        sa.Column('actor_account_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('target_account_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('resource_type', sa.String(50), nullable=True),
        sa.Column('resource_id', sa.String(64), nullable=True),
        sa.Column('event_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('client_ip', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_audit_records_action', 'audit_records', ['action'])
    op.create_index('ix_audit_records_actor_account_id', 'audit_records', ['actor_account_id'])
    op.create_index('ix_audit_records_target_account_id', 'audit_records', ['target_account_id'])
    op.create_index('ix_audit_records_event_id', 'audit_records', ['event_id'])
    op.create_index('ix_audit_records_created_at', 'audit_records', ['created_at'])

    # Create trigger to prevent UPDATE/DELETE on audit_records
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit records cannot be modified or deleted';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER prevent_audit_update
        BEFORE UPDATE ON audit_records
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_modification();
    """)
    op.execute("""
        CREATE TRIGGER prevent_audit_delete
        BEFORE DELETE ON audit_records
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_modification();
    """)

    # Seed the SYSTEM account, the actor of audit records with no human caller
    op.execute(f"""
        INSERT INTO accounts (id, email, display_name, approval_status)
        VALUES ('{SYSTEM_ACCOUNT_ID}', '{SYSTEM_ACCOUNT_EMAIL}', 'System', 'APPROVED')
    """)


def downgrade() -> None:
    """Drop ticketauth tables."""
    # Drop triggers first
    op.execute('DROP TRIGGER IF EXISTS prevent_audit_delete ON audit_records')
    op.execute('DROP TRIGGER IF EXISTS prevent_audit_update ON audit_records')
    op.execute('DROP FUNCTION IF EXISTS prevent_audit_modification()')

    # Drop tables
    op.drop_table('audit_records')
    op.drop_table('invite_codes')
    op.drop_table('event_staff')
    op.drop_table('events')
    op.drop_table('accounts')
