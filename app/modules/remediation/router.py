import uuid
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.api.deps import current_principal, get_audit_writer, origin_of, require_role
from app.core.db import get_session
from app.modules.audit.schemas import AuditPage
from app.modules.audit.service import AuditTrailWriter
from app.modules.identity.schemas import PrincipalOut, PrincipalSnapshot
from app.modules.remediation.schemas import ReinstateIn, RemediationCreate, RemediationOut
from app.modules.remediation.service import RemediationEngine

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session), audit: AuditTrailWriter = Depends(get_audit_writer)) -> RemediationEngine:
    return RemediationEngine(session, audit)

@router.post("/remediations", response_model=RemediationOut, status_code=201)
async def create_remediation(
    payload: RemediationCreate,
    request: Request,
    actor: PrincipalSnapshot = Depends(current_principal("REMEDIATE", "Principal")),
    engine: RemediationEngine = Depends(svc),
):
    return await engine.remediate(
        actor, payload.target_principal_id, payload.kind, payload.reason, payload.originating_decision_id,
        **origin_of(request),
    )

@router.get("/remediations/review-queue", response_model=AuditPage)
async def review_queue(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    _: PrincipalSnapshot = Depends(require_role("admin", action="READ_AUDIT", resource_type="AuditLog")),
    engine: RemediationEngine = Depends(svc),
):
    return await engine.review_queue(page, limit)

@router.get("/principals/{principal_id}/remediations", response_model=list[RemediationOut])
async def list_remediations(
    principal_id: uuid.UUID,
    _: PrincipalSnapshot = Depends(require_role("admin", action="READ_AUDIT", resource_type="AuditLog")),
    engine: RemediationEngine = Depends(svc),
):
    return await engine.list_for_principal(principal_id)

@router.post("/principals/{principal_id}/reinstate", response_model=PrincipalOut)
async def reinstate(
    principal_id: uuid.UUID,
    payload: ReinstateIn,
    request: Request,
    actor: PrincipalSnapshot = Depends(current_principal("REINSTATE", "Principal")),
    engine: RemediationEngine = Depends(svc),
):
    return await engine.reinstate(actor, principal_id, payload.reason, **origin_of(request))
