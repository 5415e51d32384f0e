"""
Audit Trail Writer.

One writer is built at process start and handed to every request. Each
`record` call appends exactly one AccessDecision in its own transaction, so a
denial is persisted even when the caller's own unit of work is rolled back.
Writes are retried a bounded number of times and then fail closed with
AuditWriteFailure; callers must not run the gated action in that case.
"""

import asyncio
import csv
import io
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.base import Base
from app.core.config import settings
from app.core.errors import AuditWriteFailure
from app.core.paging import page_count
from app.modules.audit.models import AccessDecision
from app.modules.audit.repository import AccessDecisionRepository
from app.modules.audit.schemas import (
    AccessDecisionOut, AuditPage, AuditQuery, AuditStats, CountBucket, DecisionDraft,
)
from app.modules.events.outbox import emergency_access_event

log = logging.getLogger("audit.writer")

EXPORT_COLUMNS = ["Timestamp", "Principal", "Action", "ResourceType", "Status", "NetworkOrigin"]

# Builds rows that must commit atomically with the decision (remediation records, ...).
Companions = Callable[[AsyncSession], Iterable[Base]]
# State changes (principal CAS, rule upserts, ...) that must commit with the decision or not at all.
Effects = Callable[[AsyncSession], Awaitable[object]]

class AuditTrailWriter:
    def __init__(self, sessionmaker: async_sessionmaker, *, max_attempts: int | None = None,
                 backoff_seconds: float | None = None):
        self._sessionmaker = sessionmaker
        self._max_attempts = max_attempts or settings.AUDIT_WRITE_MAX_ATTEMPTS
        self._backoff = settings.AUDIT_WRITE_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self._inflight: set[asyncio.Task] = set()
        self._closed = False

    # ---- Write side ----
    async def record(self, draft: DecisionDraft, companions: Companions | None = None,
                     effects: Effects | None = None) -> AccessDecision:
        if self._closed:
            raise AuditWriteFailure("audit writer is shut down")
        task = asyncio.create_task(self._write_with_retry(draft, companions, effects))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        # a cancelled request must not cancel its own audit write
        return await asyncio.shield(task)

    async def _write_with_retry(self, draft: DecisionDraft, companions: Companions | None,
                                effects: Effects | None = None) -> AccessDecision:
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._write_once(draft, companions, effects)
            except SQLAlchemyError as e:
                last_error = e
                log.warning("Audit write %s failed (attempt %d/%d): %s", draft.id, attempt, self._max_attempts, e)
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff * attempt)
        log.error("Audit write %s failed permanently; failing closed", draft.id)
        raise AuditWriteFailure(f"could not persist decision {draft.id}") from last_error

    async def _write_once(self, draft: DecisionDraft, companions: Companions | None,
                          effects: Effects | None = None) -> AccessDecision:
        async with self._sessionmaker() as session:
            repo = AccessDecisionRepository(session)
            # the previous attempt may have committed before its error surfaced
            existing = await repo.get(draft.id)
            if existing is not None:
                return existing
            if effects is not None:
                # an AuthzError raised here rolls the whole unit back and is not retried
                await effects(session)
            obj = await repo.append(**draft.row())
            if companions is not None:
                for extra in companions(session):
                    session.add(extra)
            if draft.is_break_glass:
                session.add(emergency_access_event(draft))
            await session.commit()
            log.debug("Recorded decision %s %s %s/%s", obj.id, obj.outcome, obj.resource_type, obj.action)
            return obj

    async def drain(self):
        """Stop accepting writes and wait for in-flight ones to finish."""
        self._closed = True
        if self._inflight:
            log.info("Draining %d in-flight audit writes", len(self._inflight))
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ---- Read side ----
    async def get(self, decision_id: uuid.UUID) -> AccessDecision | None:
        async with self._sessionmaker() as session:
            return await AccessDecisionRepository(session).get(decision_id)

    async def exists(self, decision_id: uuid.UUID) -> bool:
        async with self._sessionmaker() as session:
            return await AccessDecisionRepository(session).exists(decision_id)

    async def query(self, q: AuditQuery) -> AuditPage:
        async with self._sessionmaker() as session:
            repo = AccessDecisionRepository(session)
            total = await repo.count(q)
            rows = await repo.search(q)
        return AuditPage(
            items=[AccessDecisionOut.model_validate(r) for r in rows],
            total=total,
            page=q.page,
            limit=q.limit,
            pages=page_count(total, q.limit),
        )

    async def export_csv(self, q: AuditQuery) -> str:
        async with self._sessionmaker() as session:
            rows = await AccessDecisionRepository(session).search(q, paginate=False)
        out = io.StringIO()
        w = csv.writer(out, lineterminator="\n")
        w.writerow(EXPORT_COLUMNS)
        for r in rows:
            w.writerow([
                r.occurred_at.isoformat(),
                str(r.principal_id) if r.principal_id else "",
                r.action,
                r.resource_type,
                r.outcome,
                r.network_origin,
            ])
        return out.getvalue()

    async def stats(self, start: datetime | None = None, end: datetime | None = None) -> AuditStats:
        base = AuditQuery(start_date=start, end_date=end)
        async with self._sessionmaker() as session:
            repo = AccessDecisionRepository(session)
            total = await repo.count(base)
            break_glass = await repo.count(base.model_copy(update={"break_glass": True}))
            denied = await repo.count(base.model_copy(update={"status": "Deny"}))
            actions = await repo.top(AccessDecision.action, base)
            principals = await repo.top(AccessDecision.principal_id, base)
        return AuditStats(
            total=total,
            break_glass=break_glass,
            denied=denied,
            top_actions=[CountBucket(key=k, count=n) for k, n in actions],
            top_principals=[CountBucket(key=str(k) if k else None, count=n) for k, n in principals],
        )
