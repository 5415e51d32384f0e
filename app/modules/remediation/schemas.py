import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field

RemediationKind = Literal["suspend", "flag", "warn"]

class RemediationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_principal_id: uuid.UUID = Field(alias="targetPrincipalId")
    kind: RemediationKind
    reason: str = Field(max_length=2000)
    originating_decision_id: uuid.UUID = Field(alias="originatingDecisionId")

class ReinstateIn(BaseModel):
    reason: str = Field(max_length=2000)

class RemediationOut(BaseModel):
    id: uuid.UUID
    target_principal_id: uuid.UUID
    kind: str
    reason: str
    originating_decision_id: uuid.UUID
    actor_id: uuid.UUID
    created_at: datetime
    audit_decision_id: uuid.UUID

    class Config:
        from_attributes = True
