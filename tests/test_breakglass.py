"""
Break-glass override: justification threshold, overridability, grant lifetime.
"""

from datetime import timedelta

import pytest

from app.core.errors import AccessDenied, ValidationError
from app.modules.breakglass.service import AccessGrant, BreakGlassHandler
from app.modules.policy.schemas import PolicyDecision

OVERRIDABLE = PolicyDecision(outcome="DenyOverridable", reason="not assigned to patient", failed_check="assignment")


def test_nineteen_characters_is_not_enough():
    handler = BreakGlassHandler(min_justification=20)
    with pytest.raises(ValidationError):
        handler.override(OVERRIDABLE, "x" * 19)

def test_whitespace_does_not_count():
    handler = BreakGlassHandler(min_justification=20)
    with pytest.raises(ValidationError):
        handler.override(OVERRIDABLE, "   " + "y" * 18 + "     ")

def test_twenty_five_characters_grants_and_keeps_text():
    handler = BreakGlassHandler(min_justification=20, ttl_seconds=60)
    text = "Cardiac arrest in ER bay3"
    assert len(text) == 25
    auth = handler.override(OVERRIDABLE, text)
    assert auth.justification == text
    assert auth.overridden_reason == "not assigned to patient"
    assert auth.expires_at - auth.granted_at == timedelta(seconds=60)

@pytest.mark.parametrize("decision", [
    PolicyDecision(outcome="Deny", reason="hospitalId mismatch", failed_check="attribute"),
    PolicyDecision(outcome="Deny", reason="consent research missing", failed_check="consent"),
    PolicyDecision(outcome="Allow"),
])
def test_only_assignment_denials_can_be_overridden(decision):
    with pytest.raises(AccessDenied):
        BreakGlassHandler().override(decision, "a perfectly long and detailed reason")


# ── grants ───────────────────────────────────────────────────────────

def _grant(**kw):
    import uuid
    return AccessGrant(uuid.uuid4(), uuid.uuid4(), "EHR", "ehr-1", "VIEW_EHR", "EmergencyAllow", **kw)

def test_grant_is_single_use():
    handler = BreakGlassHandler(ttl_seconds=60)
    auth = handler.override(OVERRIDABLE, "Unconscious patient, no chart")
    grant = _grant(expires_at=auth.expires_at, justification=auth.justification)
    grant.consume()
    assert grant.used
    with pytest.raises(AccessDenied):
        grant.consume()

def test_grant_expires():
    handler = BreakGlassHandler(ttl_seconds=60)
    auth = handler.override(OVERRIDABLE, "Unconscious patient, no chart")
    grant = _grant(expires_at=auth.expires_at)
    with pytest.raises(AccessDenied):
        grant.consume(at=auth.expires_at + timedelta(seconds=1))
    assert not grant.used
