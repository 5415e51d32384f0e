from typing import Sequence
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from app.modules.policy.models import PolicyRule

class PolicyRuleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, resource_type: str, action: str) -> PolicyRule | None:
        q = (
            select(PolicyRule)
            .where(PolicyRule.resource_type == resource_type, PolicyRule.action == action)
            .execution_options(populate_existing=True)
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list(self) -> Sequence[PolicyRule]:
        res = await self.session.execute(select(PolicyRule).order_by(PolicyRule.resource_type, PolicyRule.action))
        return res.scalars().all()

    async def count(self) -> int:
        res = await self.session.execute(select(func.count()).select_from(PolicyRule))
        return res.scalar_one()

    async def upsert(self, **data) -> PolicyRule:
        obj = await self.get(data["resource_type"], data["action"])
        if obj is None:
            obj = PolicyRule(**data)
            self.session.add(obj)
        else:
            for k, v in data.items():
                setattr(obj, k, v)
            obj.version += 1
        await self.session.flush()
        return obj
