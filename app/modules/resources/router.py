from fastapi import APIRouter, Depends
from app.api.deps import AdminChange, admin_change
from app.core.db import get_session
from app.modules.resources.schemas import ProtectedResourceOut, ResourceTags
from app.modules.resources.service import ResourceDirectory

router = APIRouter()

def svc(s = Depends(get_session)) -> ResourceDirectory: return ResourceDirectory(s)

@router.put("/{resource_type}/{resource_id}", response_model=ProtectedResourceOut)
async def put_resource(
    resource_type: str,
    resource_id: str,
    payload: ResourceTags,
    directory: ResourceDirectory = Depends(svc),
    admin: AdminChange = Depends(admin_change("admin", action="TAG_RESOURCE", resource_type="ProtectedResource")),
):
    await admin.apply(
        f"{resource_type}/{resource_id}",
        lambda s: ResourceDirectory(s, autocommit=False).upsert(resource_type, resource_id, payload),
        patient_id=payload.patient_id,
    )
    return await directory.get(resource_type, resource_id)
