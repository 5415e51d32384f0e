import uuid
from fastapi import APIRouter, Depends, HTTPException
from app.api.deps import AdminChange, admin_change, require_role
from app.core.db import get_session
from app.core.paging import page_offset
from app.modules.identity.service import IdentityService
from app.modules.identity.schemas import PrincipalCreate, PrincipalOut, PatientAssignment

router = APIRouter()

# reads are RBAC-gated only; every mutation below is recorded as an Allow in the same transaction
read = [Depends(require_role("admin", action="READ_PRINCIPALS", resource_type="Principal"))]

def change(action: str):
    return Depends(admin_change("admin", action=action, resource_type="Principal"))

def svc(s = Depends(get_session)) -> IdentityService: return IdentityService(s)

def staged(s) -> IdentityService: return IdentityService(s, autocommit=False)

@router.post("", response_model=PrincipalOut, status_code=201)
async def create_principal(payload: PrincipalCreate, service: IdentityService = Depends(svc),
                           admin: AdminChange = change("MANAGE_PRINCIPALS")):
    if await service.repo.get_by_email(payload.email):
        raise HTTPException(status_code=409, detail="Principal already exists")
    new_id = uuid.uuid4()
    await admin.apply(str(new_id), lambda s: staged(s).register(payload, principal_id=new_id))
    return await service.get(new_id)

@router.get("", response_model=list[PrincipalOut], dependencies=read)
async def list_principals(role: str | None = None, page: int = 1, limit: int = 50, service: IdentityService = Depends(svc)):
    return await service.list(role=role, limit=limit, offset=page_offset(page, limit))

@router.get("/{principal_id}", response_model=PrincipalOut, dependencies=read)
async def get_principal(principal_id: uuid.UUID, service: IdentityService = Depends(svc)):
    obj = await service.get(principal_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Principal not found")
    return obj

@router.post("/{principal_id}/assignments", response_model=PrincipalOut)
async def set_assignment(principal_id: uuid.UUID, payload: PatientAssignment, service: IdentityService = Depends(svc),
                         admin: AdminChange = change("ASSIGN_PATIENT")):
    await admin.apply(
        str(principal_id),
        lambda s: staged(s).set_patient_assignment(principal_id, payload.patient_id, payload.assigned),
        action="ASSIGN_PATIENT" if payload.assigned else "UNASSIGN_PATIENT",
        patient_id=payload.patient_id,
    )
    return await service.get(principal_id)

@router.post("/{principal_id}/failed-logins", response_model=PrincipalOut)
async def failed_login(principal_id: uuid.UUID, service: IdentityService = Depends(svc),
                       admin: AdminChange = change("RECORD_FAILED_LOGIN")):
    await admin.apply(str(principal_id), lambda s: staged(s).record_failed_login(principal_id))
    return await service.get(principal_id)

@router.post("/{principal_id}/logins", response_model=PrincipalOut)
async def successful_login(principal_id: uuid.UUID, service: IdentityService = Depends(svc),
                           admin: AdminChange = change("RECORD_LOGIN")):
    await admin.apply(str(principal_id), lambda s: staged(s).record_successful_login(principal_id))
    return await service.get(principal_id)

@router.post("/{principal_id}/invalidate-credentials", response_model=PrincipalOut)
async def invalidate_credentials(principal_id: uuid.UUID, service: IdentityService = Depends(svc),
                                 admin: AdminChange = change("INVALIDATE_CREDENTIALS")):
    await admin.apply(str(principal_id), lambda s: staged(s).invalidate_credentials(principal_id))
    return await service.get(principal_id)
