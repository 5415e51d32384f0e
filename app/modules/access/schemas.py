import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class AccessRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: str
    resource_id: str
    action: str
    network_origin: str = "Unknown"
    user_agent: str | None = None

class AuthorizeIn(BaseModel):
    resource_type: str
    resource_id: str
    action: str
    justification: str | None = Field(default=None, max_length=2000)

class AuthorizeOut(BaseModel):
    decision_id: uuid.UUID
    outcome: str
    is_break_glass: bool
    expires_at: datetime | None = None
