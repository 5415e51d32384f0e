from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON, UniqueConstraint
from app.core.base import Base, VersionedMixin

class ProtectedResource(Base, VersionedMixin):
    """Authorization tags for a record held by the external record store."""
    __table_args__ = (UniqueConstraint("resource_type", "resource_id", name="uq_protectedresource_ref"),)

    resource_type: Mapped[str] = mapped_column(String(48))  # Patient | EHR | Report
    resource_id: Mapped[str] = mapped_column(String(64))
    patient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # owning patient
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)  # hospitalId, department, ...
    consents: Mapped[dict] = mapped_column(JSON, default=dict)    # dataSharing, research, emergencyAccess
