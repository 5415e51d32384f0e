import uuid
from typing import Any
from pydantic import BaseModel, Field

class ResourceTags(BaseModel):
    patient_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    consents: dict[str, bool] = Field(default_factory=dict)

class ProtectedResourceOut(BaseModel):
    id: uuid.UUID
    resource_type: str
    resource_id: str
    patient_id: str | None
    attributes: dict[str, Any]
    consents: dict[str, bool]

    class Config:
        from_attributes = True
