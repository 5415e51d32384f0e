import uuid
from typing import Sequence
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.base import utcnow
from app.modules.identity.models import Principal

class PrincipalRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **data) -> Principal:
        obj = Principal(**data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, principal_id: uuid.UUID) -> Principal | None:
        # populate_existing: CAS loops must see the committed row, not the identity map
        q = select(Principal).where(Principal.id == principal_id).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Principal | None:
        res = await self.session.execute(select(Principal).where(Principal.email == email.lower()))
        return res.scalar_one_or_none()

    async def list(self, *, role: str | None = None, limit: int = 50, offset: int = 0) -> Sequence[Principal]:
        q = select(Principal)
        if role: q = q.where(Principal.role == role)
        q = q.order_by(Principal.created_at.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def compare_and_set(self, principal_id: uuid.UUID, expected_version: int, **values) -> bool:
        """Apply `values` only if the row is still at `expected_version`; bumps the version by one."""
        stmt = (
            update(Principal)
            .where(Principal.id == principal_id, Principal.version == expected_version)
            .values(**values, version=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return res.rowcount == 1
