"""Account model."""
from sqlalchemy import Column, ForeignKey, String, Text, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from ticketauth.models.base import BaseModel, UTCDateTime, enum_values
from ticketauth.models.enums import ApprovalStatus


class Account(BaseModel):
    """Local business-trust record layered on top of a directory identity.

    The primary key is the directory identity id. `approval_status` is NULL
    only for rows created before approval existed; readers normalise those to
    APPROVED on first read.
    """

    __tablename__ = "accounts"

    email = Column(String(255), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=True)
    approval_status = Column(
        SQLEnum(
            ApprovalStatus,
            name="approval_status",
            native_enum=False,
            values_callable=enum_values,
        ),
        nullable=True,
        index=True,
    )
    approved_at = Column(UTCDateTime, nullable=True)
    approved_by_account_id = Column(
        Uuid,
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    rejection_reason = Column(Text, nullable=True)

    organized_events = relationship("Event", back_populates="organizer")

    @property
    def is_pending(self) -> bool:
        return self.approval_status == ApprovalStatus.PENDING

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, email={self.email}, status={self.approval_status})>"
