"""
Audit Trail Writer: append-only storage, retries, filtered reads and export.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, update

from app.modules.audit.models import AccessDecision, AppendOnlyViolation
from app.modules.audit.schemas import AuditQuery, DecisionDraft
from app.modules.audit.service import EXPORT_COLUMNS


# ── Helpers ──────────────────────────────────────────────────────────

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

def draft(outcome="Allow", minutes=0, **kw):
    base = dict(
        principal_id=uuid.uuid4(),
        principal_role="doctor",
        attribute_snapshot={"hospitalId": "HOS-001", "department": "ER"},
        resource_type="EHR",
        resource_id="ehr-1",
        patient_id="PAT-1",
        action="VIEW_EHR",
        outcome=outcome,
        occurred_at=T0 + timedelta(minutes=minutes),
        network_origin="10.0.0.1",
    )
    if outcome == "Deny":
        base["denial_reason"] = "hospitalId mismatch"
    if outcome == "EmergencyAllow":
        base["justification"] = "Trauma patient, no assigned clinician"
    base.update(kw)
    return DecisionDraft(**base)

async def fill(audit, n=5):
    recs = []
    for i in range(n):
        outcome = ("Allow", "Deny", "EmergencyAllow")[i % 3]
        recs.append(await audit.record(draft(outcome, minutes=i)))
    return recs


# ── Drafts ───────────────────────────────────────────────────────────

def test_emergency_draft_requires_justification():
    with pytest.raises(PydanticValidationError):
        draft("EmergencyAllow", justification="x" * 19)
    with pytest.raises(PydanticValidationError):
        draft("EmergencyAllow", justification=None)

def test_deny_draft_requires_reason():
    with pytest.raises(PydanticValidationError):
        draft("Deny", denial_reason=None)

def test_justification_only_on_emergency():
    with pytest.raises(PydanticValidationError):
        draft("Allow", justification="this is long enough to pass")

def test_row_denormalizes_attributes():
    row = draft("EmergencyAllow").row()
    assert row["is_break_glass"] is True
    assert row["hospital_id"] == "HOS-001"
    assert row["department"] == "ER"


# ── Append-only ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_and_delete_refused(audit, session):
    rec = await audit.record(draft())
    obj = await session.get(AccessDecision, rec.id)
    obj.outcome = "Deny"
    with pytest.raises(AppendOnlyViolation):
        await session.flush()
    await session.rollback()

    obj = await session.get(AccessDecision, rec.id)
    await session.delete(obj)
    with pytest.raises(AppendOnlyViolation):
        await session.flush()
    await session.rollback()

@pytest.mark.asyncio
async def test_bulk_statements_refused(session):
    with pytest.raises(AppendOnlyViolation):
        await session.execute(update(AccessDecision).values(outcome="Allow"))
    with pytest.raises(AppendOnlyViolation):
        await session.execute(delete(AccessDecision))

@pytest.mark.asyncio
async def test_retry_does_not_duplicate(audit):
    d = draft()
    first = await audit.record(d)
    again = await audit.record(d)
    assert first.id == again.id
    assert (await audit.query(AuditQuery())).total == 1


# ── Query ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_query_is_repeatable(audit):
    await fill(audit, 7)
    q = AuditQuery(page=2, limit=3, resource_type="EHR")
    a = await audit.query(q)
    b = await audit.query(q)
    assert a.model_dump_json() == b.model_dump_json()
    assert (a.total, a.pages, len(a.items)) == (7, 3, 3)

@pytest.mark.asyncio
async def test_newest_first(audit):
    await fill(audit, 4)
    page = await audit.query(AuditQuery())
    stamps = [r.occurred_at for r in page.items]
    assert stamps == sorted(stamps, reverse=True)

@pytest.mark.asyncio
async def test_filters(audit):
    recs = await fill(audit, 6)
    assert (await audit.query(AuditQuery(status="Deny"))).total == 2
    assert (await audit.query(AuditQuery(break_glass=True))).total == 2
    assert (await audit.query(AuditQuery(break_glass=False))).total == 4
    assert (await audit.query(AuditQuery(user_id=recs[0].principal_id))).total == 1
    assert (await audit.query(AuditQuery(patient_id="PAT-2"))).total == 0
    window = AuditQuery(start_date=T0 + timedelta(minutes=1), end_date=T0 + timedelta(minutes=3))
    assert (await audit.query(window)).total == 3

@pytest.mark.asyncio
async def test_get_single(audit):
    rec = await audit.record(draft())
    assert (await audit.get(rec.id)).action == "VIEW_EHR"
    assert await audit.get(uuid.uuid4()) is None


# ── Export / stats ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_export_csv(audit):
    recs = await fill(audit, 2)
    lines = (await audit.export_csv(AuditQuery())).splitlines()
    assert lines[0] == ",".join(EXPORT_COLUMNS)
    assert len(lines) == 3
    newest = recs[-1]
    assert lines[1] == ",".join([
        newest.occurred_at.isoformat(), str(newest.principal_id), "VIEW_EHR", "EHR", "Deny", "10.0.0.1",
    ])

@pytest.mark.asyncio
async def test_stats(audit):
    await fill(audit, 6)
    s = await audit.stats()
    assert (s.total, s.denied, s.break_glass) == (6, 2, 2)
    assert s.top_actions[0].key == "VIEW_EHR"
    assert s.top_actions[0].count == 6
