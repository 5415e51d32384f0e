from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON, Boolean, Integer
from app.core.base import Base, VersionedMixin, UTCDateTime

ROLES = ("admin", "doctor", "nurse", "staff")

class Principal(Base, VersionedMixin):
    email: Mapped[str] = mapped_column(String(320), unique=True)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default="staff")  # admin | doctor | nurse | staff
    # ABAC attributes: hospitalId, department, accessLevel, specialization ...
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)
    assigned_patients: Mapped[list] = mapped_column(JSON, default=list)

    active: Mapped[bool] = mapped_column(Boolean, default=True)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    credentials_invalidated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
