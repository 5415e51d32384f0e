"""
Break-glass override.

Converts an overridable denial (the principal is not assigned to the patient)
into a single-use, time-boxed emergency authorization. Nothing here persists
state: the justification is validated before any EmergencyAllow record can be
built, and the resulting grant lives only as long as the request that asked
for it.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.core.errors import AccessDenied, ValidationError
from app.modules.policy.schemas import PolicyDecision

log = logging.getLogger("authz.breakglass")

def _now() -> datetime:
    return datetime.now(timezone.utc)

@dataclass(frozen=True)
class EmergencyAuthorization:
    justification: str
    overridden_reason: str
    granted_at: datetime
    expires_at: datetime

@dataclass
class AccessGrant:
    """Authorization for exactly one execution of one action on one resource."""
    decision_id: uuid.UUID
    principal_id: uuid.UUID
    resource_type: str
    resource_id: str
    action: str
    outcome: str  # Allow | EmergencyAllow
    expires_at: datetime | None = None
    justification: str | None = None
    _used: bool = field(default=False, repr=False)

    @property
    def is_break_glass(self) -> bool:
        return self.outcome == "EmergencyAllow"

    @property
    def used(self) -> bool:
        return self._used

    def consume(self, at: datetime | None = None) -> None:
        if self._used:
            raise AccessDenied("grant already used")
        if self.expires_at is not None and (at or _now()) >= self.expires_at:
            raise AccessDenied("emergency grant expired")
        self._used = True

class BreakGlassHandler:
    def __init__(self, min_justification: int | None = None, ttl_seconds: int | None = None):
        self.min_justification = min_justification or settings.BREAK_GLASS_MIN_JUSTIFICATION
        self.ttl = timedelta(seconds=ttl_seconds or settings.BREAK_GLASS_GRANT_TTL_SECONDS)

    def override(self, decision: PolicyDecision, justification: str | None) -> EmergencyAuthorization:
        if not decision.overridable:
            # hard denials (role, attribute, consent) are never escalated
            raise AccessDenied(decision.reason or "not overridable")
        if len((justification or "").strip()) < self.min_justification:
            raise ValidationError(
                f"Emergency access requires detailed justification (minimum {self.min_justification} characters)"
            )
        now = _now()
        log.warning("Break-glass override granted over '%s'", decision.reason)
        return EmergencyAuthorization(
            justification=justification,
            overridden_reason=decision.reason or "",
            granted_at=now,
            expires_at=now + self.ttl,
        )
