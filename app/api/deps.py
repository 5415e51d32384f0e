import uuid
from dataclasses import dataclass
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.db import get_session
from app.core.security import get_bearer_token, client_ip
from app.modules.access.schemas import AccessRequest
from app.modules.access.service import AccessGate
from app.modules.audit.models import AccessDecision
from app.modules.audit.service import AuditTrailWriter, Effects
from app.modules.identity.schemas import PrincipalSnapshot

def get_audit_writer(request: Request) -> AuditTrailWriter:
    return request.app.state.audit_writer

def origin_of(request: Request) -> dict:
    return {"network_origin": client_ip(request), "user_agent": request.headers.get("user-agent")}

def admin_request(request: Request, action: str, resource_type: str, resource_id: str | None = None) -> AccessRequest:
    return AccessRequest(
        resource_type=resource_type, resource_id=resource_id or request.url.path, action=action, **origin_of(request),
    )

def current_principal(action: str, resource_type: str = "System"):
    """Resolve the caller for an administrative route; any role passes."""
    async def dep(
        request: Request,
        token: str | None = Depends(get_bearer_token),
        session: AsyncSession = Depends(get_session),
        audit: AuditTrailWriter = Depends(get_audit_writer),
    ) -> PrincipalSnapshot:
        return await AccessGate(session, audit).identify(token, admin_request(request, action, resource_type))
    return dep

def require_role(*roles: str, action: str, resource_type: str = "System"):
    async def dep(
        request: Request,
        token: str | None = Depends(get_bearer_token),
        session: AsyncSession = Depends(get_session),
        audit: AuditTrailWriter = Depends(get_audit_writer),
    ) -> PrincipalSnapshot:
        return await AccessGate(session, audit).require_role(token, admin_request(request, action, resource_type), roles)
    return dep

def require_self_or_role(*roles: str, action: str, resource_type: str = "System", subject_param: str = "user_id"):
    """Like `require_role`, but the principal named by the path parameter may also pass."""
    async def dep(
        request: Request,
        token: str | None = Depends(get_bearer_token),
        session: AsyncSession = Depends(get_session),
        audit: AuditTrailWriter = Depends(get_audit_writer),
    ) -> PrincipalSnapshot:
        try:
            subject = uuid.UUID(request.path_params[subject_param])
        except (KeyError, ValueError):
            subject = None
        req = admin_request(request, action, resource_type)
        return await AccessGate(session, audit).require_role(token, req, roles, allow_subject=subject)
    return dep

@dataclass
class AdminChange:
    """An authorized admin caller, ready to apply one audited change."""
    gate: AccessGate
    principal: PrincipalSnapshot
    request: Request
    action: str
    resource_type: str

    async def apply(self, resource_id: str, effect: Effects, *, action: str | None = None, **extra) -> AccessDecision:
        req = admin_request(self.request, action or self.action, self.resource_type, resource_id)
        return await self.gate.record_change(self.principal, req, effect, **extra)

def admin_change(*roles: str, action: str, resource_type: str):
    """`require_role` for routes that mutate state; the change is recorded as an Allow."""
    async def dep(
        request: Request,
        token: str | None = Depends(get_bearer_token),
        session: AsyncSession = Depends(get_session),
        audit: AuditTrailWriter = Depends(get_audit_writer),
    ) -> AdminChange:
        gate = AccessGate(session, audit)
        principal = await gate.require_role(token, admin_request(request, action, resource_type), roles)
        return AdminChange(gate, principal, request, action, resource_type)
    return dep
