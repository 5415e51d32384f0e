"""
Authorization event outbox.

Events are staged in the transaction of the AccessDecision that caused them
and published later by the relay. Every event carries the id of that decision.
Break-glass and remediation events go to separate topics so a review
consumer can subscribe to emergencies alone. Delivery is at-least-once; an
event that keeps failing is parked as `dead` after OUTBOX_MAX_ATTEMPTS.
"""

import uuid
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, JSON, select, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.base import Base, TimestampedMixin, UTCDateTime, utcnow
from app.core.config import settings
from app.modules.audit.schemas import DecisionDraft
from app.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

EMERGENCY_ACCESS_GRANTED = "EMERGENCY_ACCESS_GRANTED"
PRINCIPAL_REMEDIATED = "PRINCIPAL_REMEDIATED"
PRINCIPAL_REINSTATED = "PRINCIPAL_REINSTATED"

TOPICS = {
    EMERGENCY_ACCESS_GRANTED: "authz.break-glass",
    PRINCIPAL_REMEDIATED: "authz.remediation",
    PRINCIPAL_REINSTATED: "authz.remediation",
}
DEFAULT_TOPIC = "authz.events"

def topic_for(event_type: str) -> str:
    return TOPICS.get(event_type, DEFAULT_TOPIC)

class EventOutbox(Base, TimestampedMixin):
    event_type: Mapped[str] = mapped_column(String(64))
    subject_type: Mapped[str] = mapped_column(String(32))   # access_decision | principal
    subject_id: Mapped[str] = mapped_column(String(64))
    decision_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent | dead
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

# ---- Event builders ----
# Unsaved rows; the audit writer adds them to the decision's own transaction.

def _stage(event_type: str, draft: DecisionDraft, subject_type: str, subject_id, payload: dict) -> EventOutbox:
    return EventOutbox(
        id=uuid.uuid4(),
        event_type=event_type,
        subject_type=subject_type,
        subject_id=str(subject_id),
        decision_id=draft.id,
        payload=payload,
        occurred_at=draft.occurred_at,
        status="pending",
        attempts=0,
        next_attempt_at=utcnow(),
    )

def emergency_access_event(draft: DecisionDraft) -> EventOutbox:
    """The justification itself stays in the audit trail; the bus only sees its length."""
    row = draft.row()
    return _stage(EMERGENCY_ACCESS_GRANTED, draft, "access_decision", draft.id, {
        "is_break_glass": True,
        "principal_id": str(draft.principal_id),
        "principal_role": draft.principal_role,
        "hospital_id": row["hospital_id"],
        "department": row["department"],
        "resource_type": draft.resource_type,
        "resource_id": draft.resource_id,
        "patient_id": draft.patient_id,
        "action": draft.action,
        "justification_length": len((draft.justification or "").strip()),
        "network_origin": draft.network_origin,
    })

def remediation_event(draft: DecisionDraft, *, kind: str, reason: str,
                      originating_decision_id: uuid.UUID, remediation_id: uuid.UUID) -> EventOutbox:
    return _stage(PRINCIPAL_REMEDIATED, draft, "principal", draft.resource_id, {
        "kind": kind,
        "suspends_account": kind == "suspend",
        "reason": reason,
        "actor_id": str(draft.principal_id),
        "originating_decision_id": str(originating_decision_id),
        "remediation_id": str(remediation_id),
    })

def reinstatement_event(draft: DecisionDraft, *, reason: str) -> EventOutbox:
    return _stage(PRINCIPAL_REINSTATED, draft, "principal", draft.resource_id, {
        "reason": reason,
        "actor_id": str(draft.principal_id),
    })

def envelope(ev: EventOutbox) -> dict:
    """Wire form published on the bus."""
    return {
        "event_type": ev.event_type,
        "subject": {"type": ev.subject_type, "id": ev.subject_id},
        "decision_id": str(ev.decision_id) if ev.decision_id else None,
        "payload": ev.payload,
        "occurred_at": ev.occurred_at.isoformat(),
        "outbox_id": str(ev.id),
        "attempt": (ev.attempts or 0) + 1,
    }

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def claim_batch(self, limit: int = 50) -> list[EventOutbox]:
        # SELECT ... FOR UPDATE SKIP LOCKED (ignored by SQLite)
        q = (
            select(EventOutbox)
            .where(and_(EventOutbox.status == "pending", EventOutbox.next_attempt_at <= utcnow()))
            .order_by(EventOutbox.occurred_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = list((await self.session.execute(q)).scalars().all())
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str, max_attempts: int):
        obj.attempts = (obj.attempts or 0) + 1
        obj.last_error = error[:2000]
        if obj.attempts >= max_attempts:
            obj.status = "dead"
            log.error("Event %s (%s for decision %s) parked after %d attempts",
                      obj.id, obj.event_type, obj.decision_id, obj.attempts)
        else:
            obj.status = "pending"
            backoff = min(60, 2 ** min(obj.attempts, 6))  # 2,4,8,16,32,60s
            obj.next_attempt_at = utcnow() + timedelta(seconds=backoff)
        await self.session.flush()

    async def dead_letters(self, limit: int = 100) -> list[EventOutbox]:
        q = select(EventOutbox).where(EventOutbox.status == "dead").order_by(EventOutbox.occurred_at.asc()).limit(limit)
        return list((await self.session.execute(q)).scalars().all())

# ---- Background relay ----

async def relay_once(sessionmaker: async_sessionmaker, bus, limit: int = 50, max_attempts: int | None = None) -> int:
    """Claim one batch and publish it. Returns the number of events claimed."""
    max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS
    async with sessionmaker() as session:
        repo = OutboxRepository(session)
        batch = await repo.claim_batch(limit=limit)
        for ev in batch:
            try:
                await bus.publish(
                    topic=topic_for(ev.event_type),
                    key=ev.subject_id or "-",
                    value=envelope(ev),
                    headers={"event_type": ev.event_type},
                )
                await repo.mark_sent(ev)
            except Exception as ex:  # noqa
                log.exception("Publish of %s failed", ev.event_type)
                await repo.mark_failed(ev, error=str(ex), max_attempts=max_attempts)
        await session.commit()
        return len(batch)

async def run_outbox_relay(sessionmaker: async_sessionmaker, poll_interval_seconds: float | None = None):
    poll = settings.OUTBOX_POLL_SECONDS if poll_interval_seconds is None else poll_interval_seconds
    bus = registry.event_bus()
    log.info("Outbox relay started with bus=%s", bus.__class__.__name__)
    try:
        while True:
            try:
                claimed = await relay_once(sessionmaker, bus)
            except Exception:
                log.exception("Outbox relay iteration failed")
                claimed = 0
            if not claimed:
                await asyncio.sleep(poll)
            await asyncio.sleep(0)  # yield
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise
