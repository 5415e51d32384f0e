"""
Policy Decision Point.

`evaluate` is a pure function of (principal snapshot, rule, request context):
no I/O and no clock other than the one passed in. Checks run in a fixed order
and stop at the first failure so the recorded denial reason names exactly one
cause:

    account state -> role -> attribute predicates -> assignment -> consent

Only an assignment failure is overridable (break-glass); role, attribute and
consent failures are hard denials.
"""

from datetime import datetime, timezone

from app.modules.identity.schemas import PrincipalSnapshot
from app.modules.policy.schemas import (
    AttributePredicate, PolicyDecision, PolicyRuleSpec, RequestContext, ResourceDescriptor,
)

_MISSING = object()

ALLOW = PolicyDecision(outcome="Allow")

def _deny(reason: str, check: str) -> PolicyDecision:
    return PolicyDecision(outcome="Deny", reason=reason, failed_check=check)

def _expected_value(pred: AttributePredicate, resource: ResourceDescriptor):
    if pred.expected_from_resource is not None:
        return resource.attributes.get(pred.expected_from_resource, _MISSING)
    return pred.expected

def predicate_holds(pred: AttributePredicate, attributes: dict, resource: ResourceDescriptor) -> bool:
    actual = attributes.get(pred.attribute, _MISSING)
    expected = _expected_value(pred, resource)
    if actual is _MISSING or expected is _MISSING:
        return False
    if pred.operator == "equals":
        return actual == expected
    if pred.operator == "memberOf":
        if not isinstance(expected, (list, tuple, set, frozenset)):
            expected = [expected]
        return actual in expected
    return False

def evaluate(principal: PrincipalSnapshot, rule: PolicyRuleSpec, ctx: RequestContext,
             at: datetime | None = None) -> PolicyDecision:
    now = at or datetime.now(timezone.utc)

    # 0. account state; the resolver normally stops these earlier
    if not principal.active:
        return _deny("account inactive", "account")
    if principal.is_locked(now):
        return _deny("account locked", "account")

    # 1. RBAC
    if principal.role not in rule.permitted_roles:
        return _deny(f"role {principal.role} not permitted for {rule.action}", "role")

    # 2. ABAC, declaration order
    for index, pred in enumerate(rule.predicates):
        if not predicate_holds(pred, principal.attributes, ctx.resource):
            return _deny(f"{pred.attribute} mismatch (predicate {index}: {pred.label})", "attribute")

    # 3. assignment
    if rule.requires_assignment and principal.role != "admin":
        patient_id = ctx.resource.patient_id
        if patient_id is None or str(patient_id) not in principal.assigned_patients:
            return PolicyDecision(outcome="DenyOverridable", reason="not assigned to patient", failed_check="assignment")

    # 4. consent
    if rule.requires_consent:
        if not ctx.resource.consents.get(rule.requires_consent, False):
            return _deny(f"consent {rule.requires_consent} missing", "consent")

    return ALLOW
