"""
Remediation Engine.

Admin-driven follow-up on emergency access: suspend, flag or warn the principal
behind a decision. Every remediation points back at an existing AccessDecision
and is itself audited; the remediation row, its audit entry and the outbox
event commit together through the audit writer.
"""

import logging
import uuid
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import AccessDenied, NotFound, ValidationError
from app.core.paging import page_count
from app.modules.audit.schemas import AccessDecisionOut, AuditPage, DecisionDraft
from app.modules.audit.service import AuditTrailWriter
from app.modules.events.outbox import reinstatement_event, remediation_event
from app.modules.identity.models import Principal
from app.modules.identity.schemas import PrincipalSnapshot
from app.modules.identity.service import IdentityService
from app.modules.remediation.models import REMEDIATION_KINDS, RemediationAction
from app.modules.remediation.repository import RemediationRepository

log = logging.getLogger("remediation")

class RemediationEngine:
    def __init__(self, session: AsyncSession, audit: AuditTrailWriter, *, min_reason: int | None = None):
        self.session = session
        self.audit = audit
        self.identity = IdentityService(session)
        self.repo = RemediationRepository(session)
        self.min_reason = min_reason or settings.REMEDIATION_MIN_REASON

    def _draft(self, actor: PrincipalSnapshot, action: str, target_id: uuid.UUID, *,
               network_origin: str, user_agent: str | None, outcome: str = "Allow", **extra) -> DecisionDraft:
        return DecisionDraft(
            principal_id=actor.id,
            principal_role=actor.role,
            attribute_snapshot=dict(actor.attributes),
            resource_type="Principal",
            resource_id=str(target_id),
            action=action,
            outcome=outcome,
            network_origin=network_origin,
            user_agent=user_agent,
            **extra,
        )

    async def _require_admin(self, actor: PrincipalSnapshot, action: str, target_id: uuid.UUID,
                             network_origin: str, user_agent: str | None):
        if actor.role == "admin":
            return
        reason = f"role {actor.role} not permitted for {action}"
        rec = await self.audit.record(self._draft(
            actor, action, target_id, network_origin=network_origin, user_agent=user_agent,
            outcome="Deny", denial_reason=reason,
        ))
        log.info("Denied %s by %s: %s", action, actor.id, reason)
        raise AccessDenied(reason, decision_id=rec.id)

    def _check_reason(self, reason: str | None):
        if len((reason or "").strip()) < self.min_reason:
            raise ValidationError(f"Remediation requires a reason of at least {self.min_reason} characters")

    async def remediate(
        self,
        admin: PrincipalSnapshot,
        target_principal_id: uuid.UUID,
        kind: str,
        reason: str,
        originating_decision_id: uuid.UUID,
        network_origin: str = "Unknown",
        user_agent: str | None = None,
    ) -> RemediationAction:
        if kind not in REMEDIATION_KINDS:
            raise ValidationError(f"unknown remediation kind {kind!r}")
        action = kind.upper()
        await self._require_admin(admin, action, target_principal_id, network_origin, user_agent)
        self._check_reason(reason)

        if not await self.audit.exists(originating_decision_id):
            raise NotFound("originating decision not found")
        if await self.identity.get(target_principal_id) is None:
            raise NotFound("principal not found")

        draft = self._draft(
            admin, action, target_principal_id, network_origin=network_origin, user_agent=user_agent,
            related_decision_id=originating_decision_id,
        )
        action_id = uuid.uuid4()

        def companions(session):
            # fresh objects per attempt; the writer may retry in a new session
            return [
                RemediationAction(
                    id=action_id,
                    target_principal_id=target_principal_id,
                    kind=kind,
                    reason=reason,
                    originating_decision_id=originating_decision_id,
                    actor_id=admin.id,
                    created_at=draft.occurred_at,
                    audit_decision_id=draft.id,
                ),
                remediation_event(draft, kind=kind, reason=reason,
                                  originating_decision_id=originating_decision_id, remediation_id=action_id),
            ]

        async def effects(session):
            if kind == "suspend":
                await IdentityService(session, autocommit=False).suspend(target_principal_id)

        # suspension, remediation row, audit entry and event commit together or not at all
        await self.audit.record(draft, companions, effects)
        log.warning("Principal %s remediated (%s) by %s over decision %s",
                    target_principal_id, kind, admin.id, originating_decision_id)
        return await self.repo.get(action_id)

    async def reinstate(
        self,
        admin: PrincipalSnapshot,
        target_principal_id: uuid.UUID,
        reason: str,
        network_origin: str = "Unknown",
        user_agent: str | None = None,
    ) -> Principal:
        await self._require_admin(admin, "REINSTATE", target_principal_id, network_origin, user_agent)
        self._check_reason(reason)
        if await self.identity.get(target_principal_id) is None:
            raise NotFound("principal not found")
        draft = self._draft(admin, "REINSTATE", target_principal_id, network_origin=network_origin, user_agent=user_agent)

        async def effects(session):
            await IdentityService(session, autocommit=False).reinstate(target_principal_id)

        await self.audit.record(draft, lambda session: [reinstatement_event(draft, reason=reason)], effects)
        log.info("Principal %s reinstated by %s", target_principal_id, admin.id)
        return await self.identity.get(target_principal_id)

    async def review_queue(self, page: int = 1, limit: int = 50) -> AuditPage:
        """Emergency decisions that no remediation references yet."""
        total = await self.repo.count_unreviewed()
        rows = await self.repo.unreviewed_emergencies(page, limit)
        return AuditPage(
            items=[AccessDecisionOut.model_validate(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
            pages=page_count(total, limit),
        )

    async def list_for_principal(self, target_principal_id: uuid.UUID) -> Sequence[RemediationAction]:
        return await self.repo.list_for_principal(target_principal_id)
