"""Event and staff grant models.

Events are owned by the ticketing CRUD layer; only the columns the
authorization core reads are mapped here.
"""
from sqlalchemy import Column, ForeignKey, String, Uuid
from sqlalchemy.orm import relationship

from ticketauth.models.base import Base, BaseModel, UTCDateTime, utcnow


class Event(BaseModel):
    __tablename__ = "events"

    name = Column(String(255), nullable=False)
    organizer_id = Column(
        Uuid,
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    organizer = relationship("Account", back_populates="organized_events")
    staff_grants = relationship(
        "EventStaffGrant",
        back_populates="event",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name={self.name}, organizer_id={self.organizer_id})>"


class EventStaffGrant(Base):
    """An account may act as staff on exactly the events it holds a grant for."""

    __tablename__ = "event_staff"

    event_id = Column(
        Uuid,
        ForeignKey("events.id", ondelete="CASCADE"),
        primary_key=True,
    )
    account_id = Column(
        Uuid,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    granted_at = Column(UTCDateTime, nullable=False, default=utcnow)
    granted_by_account_id = Column(Uuid, nullable=True)

    event = relationship("Event", back_populates="staff_grants")
    account = relationship("Account")

    def __repr__(self) -> str:
        return f"<EventStaffGrant(event_id={self.event_id}, account_id={self.account_id})>"
