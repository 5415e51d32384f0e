from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.modules.policy.schemas import ResourceDescriptor
from app.modules.resources.models import ProtectedResource
from app.modules.resources.schemas import ResourceTags

class ResourceDirectory:
    def __init__(self, session: AsyncSession, *, autocommit: bool = True):
        self.session = session
        self.autocommit = autocommit

    async def get(self, resource_type: str, resource_id: str) -> ProtectedResource | None:
        q = (
            select(ProtectedResource)
            .where(ProtectedResource.resource_type == resource_type, ProtectedResource.resource_id == resource_id)
            .execution_options(populate_existing=True)
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def lookup(self, resource_type: str, resource_id: str) -> ResourceDescriptor | None:
        obj = await self.get(resource_type, resource_id)
        if not obj:
            return None
        return ResourceDescriptor(
            resource_type=obj.resource_type,
            resource_id=obj.resource_id,
            patient_id=obj.patient_id,
            attributes=dict(obj.attributes or {}),
            consents=dict(obj.consents or {}),
        )

    async def upsert(self, resource_type: str, resource_id: str, tags: ResourceTags) -> ProtectedResource:
        obj = await self.get(resource_type, resource_id)
        if obj is None:
            obj = ProtectedResource(resource_type=resource_type, resource_id=resource_id)
            self.session.add(obj)
        else:
            obj.version += 1
        obj.patient_id = tags.patient_id
        obj.attributes = tags.attributes
        obj.consents = tags.consents
        if self.autocommit:
            await self.session.commit()
        else:
            await self.session.flush()
        return obj
