import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from app.api.deps import get_audit_writer, require_role, require_self_or_role
from app.modules.audit.schemas import AccessDecisionOut, AuditPage, AuditQuery, AuditStats, DecisionOutcome
from app.modules.audit.service import AuditTrailWriter

router = APIRouter()

admin_only = [Depends(require_role("admin", action="READ_AUDIT", resource_type="AuditLog"))]

def audit_query(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    action: str | None = None,
    resource_type: str | None = Query(None, alias="resourceType"),
    status: DecisionOutcome | None = None,
    user_filter: uuid.UUID | None = Query(None, alias="userId"),
    patient_id: str | None = Query(None, alias="patientId"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    break_glass: bool | None = Query(None, alias="breakGlass"),
) -> AuditQuery:
    return AuditQuery(
        page=page, limit=limit, action=action, resource_type=resource_type, status=status,
        user_id=user_filter, patient_id=patient_id, start_date=start_date, end_date=end_date,
        break_glass=break_glass,
    )

@router.get("/audit", response_model=AuditPage, dependencies=admin_only)
async def list_audit(q: AuditQuery = Depends(audit_query), audit: AuditTrailWriter = Depends(get_audit_writer)):
    return await audit.query(q)

@router.get("/audit/break-glass", response_model=AuditPage, dependencies=admin_only)
async def list_break_glass(q: AuditQuery = Depends(audit_query), audit: AuditTrailWriter = Depends(get_audit_writer)):
    return await audit.query(q.model_copy(update={"break_glass": True}))

@router.get("/audit/export.csv", response_class=PlainTextResponse, dependencies=admin_only)
async def export_audit(q: AuditQuery = Depends(audit_query), audit: AuditTrailWriter = Depends(get_audit_writer)):
    body = await audit.export_csv(q)
    return PlainTextResponse(
        body,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-logs.csv"'},
    )

@router.get("/audit/stats", response_model=AuditStats, dependencies=admin_only)
async def audit_stats(
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    return await audit.stats(start_date, end_date)

@router.get(
    "/audit/user/{user_id}",
    response_model=AuditPage,
    dependencies=[Depends(require_self_or_role("admin", action="READ_AUDIT", resource_type="AuditLog"))],
)
async def list_for_user(
    user_id: uuid.UUID,
    q: AuditQuery = Depends(audit_query),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """A principal's own decisions; admins may read anyone's."""
    return await audit.query(q.model_copy(update={"user_id": user_id}))

@router.get("/audit/{decision_id}", response_model=AccessDecisionOut, dependencies=admin_only)
async def get_decision(decision_id: uuid.UUID, audit: AuditTrailWriter = Depends(get_audit_writer)):
    obj = await audit.get(decision_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Decision not found")
    return obj
