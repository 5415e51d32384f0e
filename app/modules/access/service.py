import logging
import uuid
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import errors
from app.modules.access.schemas import AccessRequest
from app.modules.audit.models import AccessDecision
from app.modules.audit.schemas import DecisionDraft
from app.modules.audit.service import AuditTrailWriter, Effects
from app.modules.breakglass.service import AccessGrant, BreakGlassHandler
from app.modules.identity.schemas import PrincipalSnapshot
from app.modules.identity.service import IdentityService
from app.modules.policy.engine import evaluate
from app.modules.policy.schemas import PolicyDecision, RequestContext
from app.modules.policy.service import PolicyService
from app.modules.resources.service import ResourceDirectory

log = logging.getLogger("authz.gate")

T = TypeVar("T")

class AccessGate:
    """Runs one protected request through identity, policy, break-glass and audit.

    Every call to `authorize` appends exactly one AccessDecision, whatever the
    outcome. Allow/EmergencyAllow are only returned once that record is
    durable.
    """

    def __init__(self, session: AsyncSession, audit: AuditTrailWriter, breakglass: BreakGlassHandler | None = None):
        self.session = session
        self.audit = audit
        self.identity = IdentityService(session)
        self.policies = PolicyService(session)
        self.resources = ResourceDirectory(session)
        self.breakglass = breakglass or BreakGlassHandler()

    def _draft(self, req: AccessRequest, outcome: str, principal: PrincipalSnapshot | None = None, *,
               principal_id=None, principal_role: str | None = None, **extra) -> DecisionDraft:
        return DecisionDraft(
            principal_id=principal.id if principal else principal_id,
            principal_role=principal.role if principal else principal_role,
            attribute_snapshot=dict(principal.attributes) if principal else {},
            resource_type=req.resource_type,
            resource_id=req.resource_id,
            action=req.action,
            outcome=outcome,
            network_origin=req.network_origin,
            user_agent=req.user_agent,
            **extra,
        )

    async def _deny(self, req: AccessRequest, reason: str, principal: PrincipalSnapshot | None = None, **extra):
        rec = await self.audit.record(self._draft(req, "Deny", principal, denial_reason=reason, **extra))
        log.info("Denied %s %s/%s: %s", principal.id if principal else extra.get("principal_id"),
                 req.resource_type, req.action, reason)
        return rec

    async def identify(self, token: str | None, req: AccessRequest) -> PrincipalSnapshot:
        """Resolve the caller; failures are recorded as Deny before they propagate."""
        try:
            return await self.identity.resolve(token)
        except errors.AccountLocked as e:
            await self._deny(req, e.reason, principal_id=e.principal_id, principal_role=e.role)
            raise
        except errors.AuthenticationFailure as e:
            await self._deny(req, f"authentication failed: {e.reason}")
            raise

    async def require_role(self, token: str | None, req: AccessRequest, roles: tuple[str, ...], *,
                           allow_subject: uuid.UUID | None = None) -> PrincipalSnapshot:
        """Administrative endpoints: RBAC only.

        Denials are audited here. A pass is not; routes that change state
        record it through `record_change`. `allow_subject` also lets that one
        principal through whatever its role (self-service views).
        """
        principal = await self.identify(token, req)
        if principal.role not in roles and principal.id != allow_subject:
            rec = await self._deny(req, f"role {principal.role} not permitted for {req.action}", principal)
            raise errors.AccessDenied("role not permitted", decision_id=rec.id)
        return principal

    async def record_change(self, principal: PrincipalSnapshot, req: AccessRequest,
                            effect: Effects, **extra) -> AccessDecision:
        """Apply an administrative change and its Allow entry in one transaction.

        `effect` runs in the audit writer's session; if the entry cannot be
        written the change is rolled back with it.
        """
        rec = await self.audit.record(self._draft(req, "Allow", principal, **extra), effects=effect)
        log.info("%s %s %s/%s", principal.id, req.action, req.resource_type, req.resource_id)
        return rec

    async def authorize(self, token: str | None, req: AccessRequest, justification: str | None = None) -> AccessGrant:
        # 1. identity
        principal = await self.identify(token, req)

        # 2. rule + resource tags
        resource = await self.resources.lookup(req.resource_type, req.resource_id)
        if resource is None:
            await self._deny(req, "resource not found", principal)
            raise errors.NotFound("resource not found")
        patient_id = resource.patient_id
        rule = await self.policies.rule_for(req.resource_type, req.action)
        if rule is None:
            rec = await self._deny(req, f"no policy rule for {req.resource_type}/{req.action}", principal, patient_id=patient_id)
            raise errors.AccessDenied("no policy rule", decision_id=rec.id)

        # 3. decision
        decision = evaluate(principal, rule, RequestContext(action=req.action, resource=resource))

        if decision.allowed:
            rec = await self.audit.record(self._draft(req, "Allow", principal, patient_id=patient_id))
            return AccessGrant(rec.id, principal.id, req.resource_type, req.resource_id, req.action, "Allow")

        if decision.overridable and justification is not None:
            try:
                emergency = self.breakglass.override(decision, justification)
            except errors.ValidationError as e:
                await self._deny(req, f"{decision.reason}; override rejected: {e.reason}", principal, patient_id=patient_id)
                raise
            rec = await self.audit.record(self._draft(
                req, "EmergencyAllow", principal, patient_id=patient_id, justification=emergency.justification,
            ))
            return AccessGrant(
                rec.id, principal.id, req.resource_type, req.resource_id, req.action, "EmergencyAllow",
                expires_at=emergency.expires_at, justification=emergency.justification,
            )

        rec = await self._deny(req, decision.reason, principal, patient_id=patient_id)
        raise self._denial(decision, rec.id)

    @staticmethod
    def _denial(decision: PolicyDecision, decision_id) -> errors.AccessDenied:
        if decision.failed_check == "consent":
            return errors.ConsentMissing(decision.reason, decision_id=decision_id)
        return errors.AccessDenied(decision.reason, overridable=decision.overridable, decision_id=decision_id)

    async def execute(self, token: str | None, req: AccessRequest, operation: Callable[[AccessGrant], Awaitable[T]],
                      justification: str | None = None) -> T:
        """Authorize, then run `operation` once. It never runs without a durable decision."""
        grant = await self.authorize(token, req, justification)
        grant.consume()
        return await operation(grant)
