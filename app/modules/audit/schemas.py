import uuid
from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator
from app.core.base import utcnow
from app.core.config import settings

DecisionOutcome = Literal["Allow", "Deny", "EmergencyAllow"]

class DecisionDraft(BaseModel):
    """A finalized outcome, ready to append. Invariants are checked on construction."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    principal_id: uuid.UUID | None = None
    principal_role: str | None = None
    attribute_snapshot: dict[str, Any] = Field(default_factory=dict)
    resource_type: str
    resource_id: str | None = None
    patient_id: str | None = None
    action: str
    outcome: DecisionOutcome
    occurred_at: datetime = Field(default_factory=utcnow)
    network_origin: str = "Unknown"
    user_agent: str | None = None
    denial_reason: str | None = None
    justification: str | None = None
    related_decision_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _check_outcome_fields(self):
        if self.outcome == "EmergencyAllow":
            if self.justification is None or len(self.justification.strip()) < settings.BREAK_GLASS_MIN_JUSTIFICATION:
                raise ValueError("EmergencyAllow requires a justification of at least "
                                 f"{settings.BREAK_GLASS_MIN_JUSTIFICATION} characters")
        elif self.justification is not None:
            raise ValueError("justification is only recorded on EmergencyAllow")
        if self.outcome == "Deny" and not self.denial_reason:
            raise ValueError("Deny requires a denial reason")
        if self.outcome != "Deny" and self.denial_reason is not None:
            raise ValueError("denial reason is only recorded on Deny")
        return self

    @property
    def is_break_glass(self) -> bool:
        return self.outcome == "EmergencyAllow"

    def row(self) -> dict:
        data = self.model_dump()
        attrs = data["attribute_snapshot"] or {}
        data["is_break_glass"] = self.is_break_glass
        data["hospital_id"] = str(attrs["hospitalId"]) if attrs.get("hospitalId") is not None else None
        data["department"] = str(attrs["department"]) if attrs.get("department") is not None else None
        return data

class AccessDecisionOut(BaseModel):
    id: uuid.UUID
    principal_id: uuid.UUID | None
    principal_role: str | None
    attribute_snapshot: dict[str, Any]
    hospital_id: str | None
    department: str | None
    resource_type: str
    resource_id: str | None
    patient_id: str | None
    action: str
    outcome: str
    occurred_at: datetime
    network_origin: str
    user_agent: str | None
    denial_reason: str | None
    is_break_glass: bool
    justification: str | None
    related_decision_id: uuid.UUID | None

    class Config:
        from_attributes = True

class AuditQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=200)
    action: str | None = None
    resource_type: str | None = None
    status: DecisionOutcome | None = None
    user_id: uuid.UUID | None = None
    patient_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    break_glass: bool | None = None

class AuditPage(BaseModel):
    items: list[AccessDecisionOut]
    total: int
    page: int
    limit: int
    pages: int

class CountBucket(BaseModel):
    key: str | None
    count: int

class AuditStats(BaseModel):
    total: int
    break_glass: int
    denied: int
    top_actions: list[CountBucket]
    top_principals: list[CountBucket]
