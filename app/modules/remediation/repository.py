import uuid
from typing import Sequence
from sqlalchemy import select, func, desc, exists
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.paging import page_offset
from app.modules.audit.models import AccessDecision
from app.modules.remediation.models import RemediationAction

def _unreviewed():
    reviewed = exists().where(RemediationAction.originating_decision_id == AccessDecision.id)
    return [AccessDecision.outcome == "EmergencyAllow", ~reviewed]

class RemediationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_principal(self, principal_id: uuid.UUID) -> Sequence[RemediationAction]:
        q = (
            select(RemediationAction)
            .where(RemediationAction.target_principal_id == principal_id)
            .order_by(desc(RemediationAction.created_at), desc(RemediationAction.id))
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def for_decision(self, decision_id: uuid.UUID) -> Sequence[RemediationAction]:
        q = select(RemediationAction).where(RemediationAction.originating_decision_id == decision_id)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def unreviewed_emergencies(self, page: int, limit: int) -> Sequence[AccessDecision]:
        q = (
            select(AccessDecision)
            .where(*_unreviewed())
            .order_by(desc(AccessDecision.occurred_at), desc(AccessDecision.id))
            .limit(limit)
            .offset(page_offset(page, limit))
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def count_unreviewed(self) -> int:
        res = await self.session.execute(select(func.count()).select_from(AccessDecision).where(*_unreviewed()))
        return res.scalar_one()

    async def get(self, action_id: uuid.UUID) -> RemediationAction | None:
        res = await self.session.execute(select(RemediationAction).where(RemediationAction.id == action_id))
        return res.scalar_one_or_none()
