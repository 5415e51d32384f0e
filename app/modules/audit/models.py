import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy import String, JSON, Boolean, Text, Index, event
from app.core.base import Base, UTCDateTime, utcnow

class AppendOnlyViolation(RuntimeError):
    pass

_APPEND_ONLY: set[type] = set()

def append_only(cls):
    """Refuse ORM updates and deletes (per-object and bulk) for `cls`."""
    _APPEND_ONLY.add(cls)

    @event.listens_for(cls, "before_update")
    def _no_update(mapper, connection, target):
        raise AppendOnlyViolation(f"{cls.__name__} records cannot be modified")

    @event.listens_for(cls, "before_delete")
    def _no_delete(mapper, connection, target):
        raise AppendOnlyViolation(f"{cls.__name__} records cannot be deleted")

    return cls

@event.listens_for(Session, "do_orm_execute")
def _no_bulk_mutation(state):
    if not (state.is_update or state.is_delete):
        return
    for mapper in state.all_mappers:
        if mapper.class_ in _APPEND_ONLY:
            raise AppendOnlyViolation(f"{mapper.class_.__name__} records cannot be modified")

@append_only
class AccessDecision(Base):
    __tablename__ = "accessdecision"
    __table_args__ = (
        Index("ix_accessdecision_occurred", "occurred_at"),
        Index("ix_accessdecision_principal", "principal_id", "occurred_at"),
        Index("ix_accessdecision_patient", "patient_id", "occurred_at"),
        Index("ix_accessdecision_action", "action", "occurred_at"),
        Index("ix_accessdecision_break_glass", "is_break_glass"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # who
    principal_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # None only when the credential did not verify
    principal_role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    attribute_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)
    hospital_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    department: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # what
    resource_type: Mapped[str] = mapped_column(String(48))
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    patient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(48))
    outcome: Mapped[str] = mapped_column(String(16))  # Allow | Deny | EmergencyAllow

    # when / where
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    network_origin: Mapped[str] = mapped_column(String(64), default="Unknown")
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)

    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_break_glass: Mapped[bool] = mapped_column(Boolean, default=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_decision_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
