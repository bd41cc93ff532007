"""InviteCode model."""
from datetime import datetime

from sqlalchemy import Column, ForeignKey, Index, String, Text, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from ticketauth.models.base import BaseModel, UTCDateTime, enum_values
from ticketauth.models.enums import AppRole, InviteCodeStatus


class InviteCode(BaseModel):
    """Single-use, expiring code that grants one role (and event scope) on redemption.

    Status only moves forward from PENDING; REDEEMED, EXPIRED and REVOKED are
    terminal. Redemption claims the row with a conditional update on
    status = PENDING so concurrent redeemers cannot both win.
    """

    __tablename__ = "invite_codes"

    code = Column(String(32), nullable=False, unique=True, index=True)
    role = Column(
        SQLEnum(AppRole, name="app_role", native_enum=False, values_callable=enum_values),
        nullable=False,
    )
    target_event_id = Column(
        Uuid,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    status = Column(
        SQLEnum(
            InviteCodeStatus,
            name="invite_code_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=False,
        default=InviteCodeStatus.PENDING,
    )
    created_by_account_id = Column(
        Uuid,
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    expires_at = Column(UTCDateTime, nullable=False)
    redeemed_by_account_id = Column(
        Uuid,
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    redeemed_at = Column(UTCDateTime, nullable=True)
    revoked_at = Column(UTCDateTime, nullable=True)
    revoked_reason = Column(Text, nullable=True)

    target_event = relationship("Event")

    __table_args__ = (
        Index("ix_invite_codes_status_expires_at", "status", "expires_at"),
    )

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"<InviteCode(id={self.id}, role={self.role}, status={self.status})>"
