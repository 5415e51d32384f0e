import uuid
from typing import Sequence
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.paging import page_offset
from app.modules.audit.models import AccessDecision
from app.modules.audit.schemas import AuditQuery

def _conditions(q: AuditQuery) -> list:
    conditions = []
    if q.action:        conditions.append(AccessDecision.action == q.action)
    if q.resource_type: conditions.append(AccessDecision.resource_type == q.resource_type)
    if q.status:        conditions.append(AccessDecision.outcome == q.status)
    if q.user_id:       conditions.append(AccessDecision.principal_id == q.user_id)
    if q.patient_id:    conditions.append(AccessDecision.patient_id == q.patient_id)
    if q.start_date:    conditions.append(AccessDecision.occurred_at >= q.start_date)
    if q.end_date:      conditions.append(AccessDecision.occurred_at <= q.end_date)
    if q.break_glass is not None:
        conditions.append(AccessDecision.is_break_glass.is_(q.break_glass))
    return conditions

class AccessDecisionRepository:
    """Read side plus `append`. No update or delete."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, **data) -> AccessDecision:
        obj = AccessDecision(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, decision_id: uuid.UUID) -> AccessDecision | None:
        res = await self.session.execute(select(AccessDecision).where(AccessDecision.id == decision_id))
        return res.scalar_one_or_none()

    async def exists(self, decision_id: uuid.UUID) -> bool:
        res = await self.session.execute(select(AccessDecision.id).where(AccessDecision.id == decision_id))
        return res.scalar_one_or_none() is not None

    async def search(self, q: AuditQuery, *, paginate: bool = True) -> Sequence[AccessDecision]:
        stmt = (
            select(AccessDecision)
            .where(*_conditions(q))
            # id breaks timestamp ties so repeated queries page identically
            .order_by(desc(AccessDecision.occurred_at), desc(AccessDecision.id))
        )
        if paginate:
            stmt = stmt.limit(q.limit).offset(page_offset(q.page, q.limit))
        res = await self.session.execute(stmt)
        return res.scalars().all()

    async def count(self, q: AuditQuery) -> int:
        stmt = select(func.count()).select_from(AccessDecision).where(*_conditions(q))
        res = await self.session.execute(stmt)
        return res.scalar_one()

    async def top(self, column, q: AuditQuery, limit: int = 10) -> list[tuple]:
        stmt = (
            select(column, func.count().label("n"))
            .where(*_conditions(q))
            .group_by(column)
            .order_by(desc("n"), column)
            .limit(limit)
        )
        res = await self.session.execute(stmt)
        return [tuple(r) for r in res.all()]
