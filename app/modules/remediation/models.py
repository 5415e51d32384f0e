import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Index
from app.core.base import Base, UTCDateTime, utcnow
from app.modules.audit.models import append_only

REMEDIATION_KINDS = ("suspend", "flag", "warn")

@append_only
class RemediationAction(Base):
    __tablename__ = "remediationaction"
    __table_args__ = (
        Index("ix_remediation_target", "target_principal_id", "created_at"),
        Index("ix_remediation_origin", "originating_decision_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    target_principal_id: Mapped[uuid.UUID] = mapped_column()
    kind: Mapped[str] = mapped_column(String(16))  # suspend | flag | warn
    reason: Mapped[str] = mapped_column(Text)
    # stored as a plain value: the decision log is append-only and never cascades
    originating_decision_id: Mapped[uuid.UUID] = mapped_column()
    actor_id: Mapped[uuid.UUID] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    audit_decision_id: Mapped[uuid.UUID] = mapped_column()
