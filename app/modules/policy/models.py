from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON, Boolean, UniqueConstraint
from app.core.base import Base, VersionedMixin

class PolicyRule(Base, VersionedMixin):
    __table_args__ = (UniqueConstraint("resource_type", "action", name="uq_policyrule_resource_action"),)

    resource_type: Mapped[str] = mapped_column(String(48))  # Patient | EHR | Report | ...
    action: Mapped[str] = mapped_column(String(48))         # VIEW_EHR | UPDATE_PATIENT | ...
    permitted_roles: Mapped[list] = mapped_column(JSON, default=list)
    # ordered [{"attribute": "hospitalId", "operator": "equals", "expected_from_resource": "hospitalId"}, ...]
    predicates: Mapped[list] = mapped_column(JSON, default=list)
    requires_assignment: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_consent: Mapped[str | None] = mapped_column(String(32), nullable=True)  # dataSharing | research | ...
