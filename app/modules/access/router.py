from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.api.deps import get_audit_writer, origin_of
from app.core.db import get_session
from app.core.security import get_bearer_token
from app.modules.access.schemas import AccessRequest, AuthorizeIn, AuthorizeOut
from app.modules.access.service import AccessGate
from app.modules.audit.service import AuditTrailWriter

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session), audit: AuditTrailWriter = Depends(get_audit_writer)) -> AccessGate:
    return AccessGate(session, audit)

@router.post("/access/authorize", response_model=AuthorizeOut)
async def authorize(
    payload: AuthorizeIn,
    request: Request,
    token: str | None = Depends(get_bearer_token),
    gate: AccessGate = Depends(svc),
):
    req = AccessRequest(
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        action=payload.action,
        **origin_of(request),
    )
    grant = await gate.authorize(token, req, payload.justification)
    return AuthorizeOut(
        decision_id=grant.decision_id,
        outcome=grant.outcome,
        is_break_glass=grant.is_break_glass,
        expires_at=grant.expires_at,
    )
