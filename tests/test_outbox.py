"""
Outbox relay: pending events are published once, routed by event type, and
failures back off until they are parked.
"""

import uuid

import pytest
from sqlalchemy import select

from app.modules.audit.schemas import DecisionDraft
from app.modules.events.outbox import (
    EventOutbox, OutboxRepository, emergency_access_event, relay_once, remediation_event, topic_for,
)
from app.platform.adapters.bus_noop import NoopEventBus


class FailingBus:
    def __init__(self):
        self.calls = 0

    async def publish(self, topic, key, value, headers=None):
        self.calls += 1
        raise ConnectionError("redis unavailable")

    async def close(self):
        return None


def emergency_draft():
    return DecisionDraft(
        principal_id=uuid.uuid4(), principal_role="nurse", attribute_snapshot={"hospitalId": "H1"},
        resource_type="EHR", resource_id="EHR-1", patient_id="PAT-1", action="VIEW_EHR",
        outcome="EmergencyAllow", justification="  Cardiac arrest in ER bay3  ",
    )


def remediation_draft(target_id):
    return DecisionDraft(
        principal_id=uuid.uuid4(), principal_role="admin", resource_type="Principal",
        resource_id=str(target_id), action="SUSPEND", outcome="Allow",
    )


async def stage(session, ev):
    session.add(ev)
    await session.commit()
    return ev


@pytest.mark.asyncio
async def test_relay_publishes_and_marks_sent(session, sessionmaker):
    draft = emergency_draft()
    ev = await stage(session, emergency_access_event(draft))
    bus = NoopEventBus()
    assert await relay_once(sessionmaker, bus) == 1
    assert len(bus.published) == 1
    msg = bus.published[0]
    assert msg["topic"] == "authz.break-glass"
    assert msg["key"] == str(draft.id)
    assert msg["headers"] == {"event_type": "EMERGENCY_ACCESS_GRANTED"}
    value = msg["value"]
    assert value["event_type"] == "EMERGENCY_ACCESS_GRANTED"
    assert value["decision_id"] == str(draft.id)
    assert value["outbox_id"] == str(ev.id)
    assert value["attempt"] == 1
    assert value["payload"]["hospital_id"] == "H1"
    assert value["payload"]["justification_length"] == len("Cardiac arrest in ER bay3")

    # nothing left to claim
    assert await relay_once(sessionmaker, bus) == 0
    assert len(bus.published) == 1

@pytest.mark.asyncio
async def test_remediation_events_use_their_own_topic(session, sessionmaker):
    target = uuid.uuid4()
    await stage(session, remediation_event(
        remediation_draft(target), kind="warn", reason="x" * 20,
        originating_decision_id=uuid.uuid4(), remediation_id=uuid.uuid4(),
    ))
    bus = NoopEventBus()
    await relay_once(sessionmaker, bus)
    msg = bus.published[0]
    assert msg["topic"] == "authz.remediation"
    assert msg["key"] == str(target)
    assert msg["value"]["payload"]["suspends_account"] is False

def test_unknown_event_types_fall_back_to_default_topic():
    assert topic_for("SOMETHING_ELSE") == "authz.events"
    assert topic_for("PRINCIPAL_REINSTATED") == "authz.remediation"

@pytest.mark.asyncio
async def test_failed_publish_is_retried_later(session, sessionmaker):
    ev = await stage(session, emergency_access_event(emergency_draft()))
    bus = FailingBus()
    assert await relay_once(sessionmaker, bus) == 1
    assert bus.calls == 1

    async with sessionmaker() as s:
        row = (await s.execute(select(EventOutbox).where(EventOutbox.id == ev.id))).scalar_one()
    assert row.status == "pending"
    assert row.attempts == 1
    assert "redis unavailable" in row.last_error
    assert row.next_attempt_at > row.created_at

    # backoff keeps it out of the next batch
    assert await relay_once(sessionmaker, bus) == 0

@pytest.mark.asyncio
async def test_event_is_parked_after_max_attempts(session, sessionmaker):
    ev = await stage(session, emergency_access_event(emergency_draft()))
    bus = FailingBus()
    assert await relay_once(sessionmaker, bus, max_attempts=1) == 1

    async with sessionmaker() as s:
        row = (await s.execute(select(EventOutbox).where(EventOutbox.id == ev.id))).scalar_one()
        assert row.status == "dead"
        assert row.attempts == 1
        parked = await OutboxRepository(s).dead_letters()
    assert [p.id for p in parked] == [ev.id]
