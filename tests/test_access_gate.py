"""
End-to-end decisions through the Access Gate: identity -> PDP -> break-glass ->
audit. Every authorize call must leave exactly one AccessDecision behind.
"""


import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.errors import (
    AccessDenied, AccountLocked, AuditWriteFailure, AuthenticationFailure, ConsentMissing, NotFound, ValidationError,
)
from app.modules.access.schemas import AccessRequest
from app.modules.access.service import AccessGate
from app.modules.audit.schemas import AuditQuery
from app.modules.events.outbox import EventOutbox
from app.modules.identity.service import IdentityService

JUSTIFICATION_25 = "Cardiac arrest in ER bay3"
JUSTIFICATION_19 = "Patient unconscious"


def view_ehr(resource_id="ehr-1", action="VIEW_EHR", resource_type="EHR"):
    return AccessRequest(resource_type=resource_type, resource_id=resource_id, action=action,
                         network_origin="10.0.0.7", user_agent="pytest")

async def decisions(audit, **filters):
    return (await audit.query(AuditQuery(limit=200, **filters))).items


# ── Allow ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_allow_is_recorded_once(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal(role="doctor", assigned=["PAT-1"])
    await tag_resource()
    grant = await AccessGate(session, audit).authorize(token_for(doc), view_ehr())
    assert grant.outcome == "Allow"
    rows = await decisions(audit)
    assert len(rows) == 1
    rec = rows[0]
    assert rec.id == grant.decision_id
    assert (rec.outcome, rec.principal_id, rec.patient_id) == ("Allow", doc.id, "PAT-1")
    assert rec.network_origin == "10.0.0.7"
    assert rec.hospital_id == "HOS-001"
    assert rec.denial_reason is None


# ── Scenario: cross-hospital doctor ──────────────────────────────────

@pytest.mark.asyncio
async def test_other_hospital_doctor_denied(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal(role="doctor", attributes={"hospitalId": "HOS-002"}, assigned=["PAT-1"])
    await tag_resource(attributes={"hospitalId": "HOS-001"})
    gate = AccessGate(session, audit)
    with pytest.raises(AccessDenied) as e:
        await gate.authorize(token_for(doc), view_ehr(), JUSTIFICATION_25)
    assert e.value.overridable is False
    assert e.value.to_body()["break_glass_available"] is False
    assert "hospitalId" not in str(e.value.to_body())
    rows = await decisions(audit)
    assert len(rows) == 1
    assert rows[0].outcome == "Deny"
    assert "hospitalId mismatch" in rows[0].denial_reason


# ── Scenario: nurse break-glass ──────────────────────────────────────

@pytest.mark.asyncio
async def test_unassigned_nurse_emergency_allow(session, audit, policies, make_principal, tag_resource, token_for):
    nurse = await make_principal(role="nurse", assigned=[])
    await tag_resource(patient_id="PAT-7")
    grant = await AccessGate(session, audit).authorize(token_for(nurse), view_ehr(), JUSTIFICATION_25)
    assert grant.outcome == "EmergencyAllow"
    assert grant.is_break_glass
    assert grant.expires_at is not None

    rows = await decisions(audit)
    assert len(rows) == 1
    assert rows[0].outcome == "EmergencyAllow"
    assert rows[0].is_break_glass is True
    assert rows[0].justification == JUSTIFICATION_25

    res = await session.execute(select(EventOutbox).where(EventOutbox.event_type == "EMERGENCY_ACCESS_GRANTED"))
    events = res.scalars().all()
    assert len(events) == 1
    assert events[0].subject_id == str(grant.decision_id)
    assert events[0].decision_id == grant.decision_id
    payload = events[0].payload
    assert payload["patient_id"] == "PAT-7"
    assert payload["is_break_glass"] is True
    assert payload["justification_length"] == len(JUSTIFICATION_25)
    # the free-text justification is kept in the audit trail only
    assert JUSTIFICATION_25 not in str(payload)

@pytest.mark.asyncio
async def test_short_justification_stays_denied(session, audit, policies, make_principal, tag_resource, token_for):
    nurse = await make_principal(role="nurse", assigned=[])
    await tag_resource()
    with pytest.raises(ValidationError):
        await AccessGate(session, audit).authorize(token_for(nurse), view_ehr(), JUSTIFICATION_19)
    rows = await decisions(audit)
    assert [r.outcome for r in rows] == ["Deny"]
    assert rows[0].is_break_glass is False
    assert rows[0].justification is None
    assert "override rejected" in rows[0].denial_reason

@pytest.mark.asyncio
async def test_unassigned_without_justification_offers_break_glass(session, audit, policies, make_principal, tag_resource, token_for):
    nurse = await make_principal(role="nurse", assigned=[])
    await tag_resource()
    with pytest.raises(AccessDenied) as e:
        await AccessGate(session, audit).authorize(token_for(nurse), view_ehr())
    assert e.value.overridable
    assert e.value.to_body() == {
        "message": "Forbidden", "break_glass_available": True, "decision_id": str(e.value.decision_id),
    }

@pytest.mark.asyncio
async def test_no_standing_grant(session, audit, policies, make_principal, tag_resource, token_for):
    nurse = await make_principal(role="nurse", assigned=[])
    await tag_resource()
    gate = AccessGate(session, audit)
    await gate.authorize(token_for(nurse), view_ehr(), JUSTIFICATION_25)
    with pytest.raises(AccessDenied):
        await gate.authorize(token_for(nurse), view_ehr())
    assert sorted(r.outcome for r in await decisions(audit)) == ["Deny", "EmergencyAllow"]


# ── Consent ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_consent_missing_not_overridable(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal(role="doctor", assigned=["PAT-1"])
    await tag_resource(resource_type="Patient", resource_id="PAT-1", consents={"dataSharing": False})
    with pytest.raises(ConsentMissing) as e:
        await AccessGate(session, audit).authorize(
            token_for(doc), view_ehr("PAT-1", "SHARE_PATIENT_DATA", "Patient"), JUSTIFICATION_25,
        )
    assert e.value.overridable is False
    rows = await decisions(audit)
    assert rows[0].denial_reason == "consent dataSharing missing"
    assert rows[0].outcome == "Deny"


# ── Account state ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_suspension_denies_every_later_action(session, audit, policies, make_principal, tag_resource, token_for):
    admin = await make_principal(role="admin")
    await tag_resource()
    gate = AccessGate(session, audit)
    assert (await gate.authorize(token_for(admin), view_ehr())).outcome == "Allow"

    await IdentityService(session).suspend(admin.id)
    for action in ("VIEW_EHR", "DELETE_EHR"):
        with pytest.raises(AccountLocked):
            await gate.authorize(token_for(admin), view_ehr(action=action), JUSTIFICATION_25)

    denied = await decisions(audit, status="Deny")
    assert len(denied) == 2
    assert {r.denial_reason for r in denied} == {"account inactive"}
    assert {r.principal_id for r in denied} == {admin.id}

@pytest.mark.asyncio
async def test_bad_credential_recorded_without_principal(session, audit, policies, tag_resource):
    await tag_resource()
    with pytest.raises(AuthenticationFailure):
        await AccessGate(session, audit).authorize("garbage", view_ehr())
    rows = await decisions(audit)
    assert len(rows) == 1
    assert rows[0].principal_id is None
    assert rows[0].denial_reason.startswith("authentication failed")


# ── Missing things ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unknown_resource(session, audit, policies, make_principal, token_for):
    doc = await make_principal()
    with pytest.raises(NotFound):
        await AccessGate(session, audit).authorize(token_for(doc), view_ehr("nope"))
    rows = await decisions(audit)
    assert [(r.outcome, r.denial_reason) for r in rows] == [("Deny", "resource not found")]

@pytest.mark.asyncio
async def test_no_rule_means_deny(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal()
    await tag_resource(resource_type="Invoice", resource_id="inv-1")
    with pytest.raises(AccessDenied):
        await AccessGate(session, audit).authorize(token_for(doc), view_ehr("inv-1", "VIEW_INVOICE", "Invoice"))
    assert (await decisions(audit))[0].denial_reason == "no policy rule for Invoice/VIEW_INVOICE"


# ── execute / fail closed ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_execute_runs_operation_once(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal(assigned=["PAT-1"])
    await tag_resource()
    calls = []

    async def read_record(grant):
        calls.append(grant.decision_id)
        return "chart"

    assert await AccessGate(session, audit).execute(token_for(doc), view_ehr(), read_record) == "chart"
    assert len(calls) == 1
    assert await audit.exists(calls[0])

@pytest.mark.asyncio
async def test_audit_failure_blocks_operation(session, audit, policies, make_principal, tag_resource, token_for, monkeypatch):
    doc = await make_principal(assigned=["PAT-1"])
    await tag_resource()
    attempts = []

    async def broken(draft, companions, effects=None):
        attempts.append(draft.id)
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))
    monkeypatch.setattr(audit, "_write_once", broken)

    ran = []

    async def read_record(grant):
        ran.append(grant)

    with pytest.raises(AuditWriteFailure):
        await AccessGate(session, audit).execute(token_for(doc), view_ehr(), read_record)
    assert ran == []
    # same pre-assigned id on every attempt
    assert len(attempts) == 3 and len(set(attempts)) == 1

@pytest.mark.asyncio
async def test_drained_writer_fails_closed(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal(assigned=["PAT-1"])
    await tag_resource()
    await audit.drain()
    with pytest.raises(AuditWriteFailure):
        await AccessGate(session, audit).authorize(token_for(doc), view_ehr())

@pytest.mark.asyncio
async def test_every_call_leaves_one_decision(session, audit, policies, make_principal, tag_resource, token_for):
    doc = await make_principal(assigned=["PAT-1"])
    other = await make_principal(attributes={"hospitalId": "HOS-002"})
    await tag_resource()
    gate = AccessGate(session, audit)
    attempts = [
        (token_for(doc), view_ehr(), None),
        (token_for(other), view_ehr(), None),
        (None, view_ehr(), None),
        (token_for(doc), view_ehr("missing"), None),
        (token_for(doc), view_ehr(action="SIGN_EHR"), None),
    ]
    for token, req, justification in attempts:
        try:
            await gate.authorize(token, req, justification)
        except (AccessDenied, AuthenticationFailure, NotFound):
            pass
    assert (await audit.query(AuditQuery())).total == len(attempts)
    ids = [r.id for r in await decisions(audit)]
    assert len(ids) == len(set(ids)) == len(attempts)
