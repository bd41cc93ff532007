"""AuditRecord model."""
import uuid

from sqlalchemy import Column, Index, String, Text, Uuid, event
from sqlalchemy import Enum as SQLEnum

from ticketauth.models.base import Base, UTCDateTime, enum_values, utcnow
from ticketauth.models.enums import AuditAction


class AuditRecord(Base):
    """Append-only audit trail.

    Rows are written in their own transaction by the audit sink and are never
    updated or deleted. Actor and target ids are deliberately not foreign keys
    so a record can always be written.
    """

    __tablename__ = "audit_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    action = Column(
        SQLEnum(AuditAction, name="audit_action", native_enum=False, values_callable=enum_values),
        nullable=False,
        index=True,
    )
    actor_account_id = Column(Uuid, nullable=False, index=True)
    target_account_id = Column(Uuid, nullable=True, index=True)
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(64), nullable=True)
    event_id = Column(Uuid, nullable=True, index=True)
    details = Column(Text, nullable=True)
    client_ip = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_records_created_at", "created_at"),)

    def __repr__(self) -> str:
        return f"<AuditRecord(id={self.id}, action={self.action}, actor={self.actor_account_id})>"


@event.listens_for(AuditRecord, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise PermissionError("audit records are append-only")


@event.listens_for(AuditRecord, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise PermissionError("audit records are append-only")
