import uuid
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator

Outcome = Literal["Allow", "Deny", "DenyOverridable"]
FailedCheck = Literal["account", "role", "attribute", "assignment", "consent"]

class AttributePredicate(BaseModel):
    """One ABAC check against a principal attribute.

    `equals`: attribute == expected. `memberOf`: attribute in expected (a list).
    `expected_from_resource` names a resource attribute to compare against
    instead of a literal (e.g. the record's hospitalId).
    """
    model_config = ConfigDict(frozen=True)

    attribute: str
    operator: Literal["equals", "memberOf"]
    expected: Any = None
    expected_from_resource: str | None = None

    @model_validator(mode="after")
    def _check_expected(self):
        if self.expected_from_resource is None and self.expected is None:
            raise ValueError("predicate needs expected or expected_from_resource")
        if self.operator == "memberOf" and self.expected_from_resource is None and not isinstance(self.expected, (list, tuple)):
            raise ValueError("memberOf expects a list")
        return self

    @property
    def label(self) -> str:
        return f"{self.attribute} {self.operator}"

class PolicyRuleSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: str
    action: str
    permitted_roles: frozenset[str]
    predicates: tuple[AttributePredicate, ...] = ()
    requires_assignment: bool = False
    requires_consent: str | None = None

class ResourceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: str
    resource_id: str
    patient_id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    consents: dict[str, bool] = Field(default_factory=dict)

class RequestContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str
    resource: ResourceDescriptor

class PolicyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    reason: str | None = None
    failed_check: FailedCheck | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome == "Allow"

    @property
    def overridable(self) -> bool:
        return self.outcome == "DenyOverridable"

# ---- API ----

class PolicyRuleIn(BaseModel):
    resource_type: str
    action: str
    permitted_roles: list[str] = Field(..., min_length=1)
    predicates: list[AttributePredicate] = Field(default_factory=list)
    requires_assignment: bool = False
    requires_consent: str | None = None

class PolicyRuleOut(BaseModel):
    id: uuid.UUID
    resource_type: str
    action: str
    permitted_roles: list[str]
    predicates: list[dict]
    requires_assignment: bool
    requires_consent: str | None
    version: int

    class Config:
        from_attributes = True
