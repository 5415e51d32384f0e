import uuid
from datetime import datetime
from typing import Any
from pydantic import BaseModel, ConfigDict, Field
from app.modules.identity.models import ROLES

ROLE_PATTERN = f"^({'|'.join(ROLES)})$"

class PrincipalSnapshot(BaseModel):
    """Immutable view of a principal taken at the start of a request.

    The PDP evaluates this copy, never the live row, so a suspension committed
    mid-evaluation only affects the next request.
    """
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    role: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    assigned_patients: frozenset[str] = frozenset()
    active: bool = True
    locked_until: datetime | None = None
    version: int = 1
    mfa_satisfied: bool = False

    def is_locked(self, at: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > at

class PrincipalCreate(BaseModel):
    email: str
    display_name: str | None = None
    role: str = Field(default="staff", pattern=ROLE_PATTERN)
    attributes: dict[str, Any] = Field(default_factory=dict)
    assigned_patients: list[str] = Field(default_factory=list)

class PatientAssignment(BaseModel):
    patient_id: str
    assigned: bool = True

class PrincipalOut(BaseModel):
    id: uuid.UUID
    email: str
    display_name: str | None
    role: str
    attributes: dict[str, Any]
    assigned_patients: list[str]
    active: bool
    locked_until: datetime | None
    failed_login_attempts: int
    version: int

    class Config:
        from_attributes = True
