import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.errors import AuthenticationFailure, AccountLocked, ConcurrentModification, NotFound
from app.core.security import decode_credential
from app.modules.identity.models import Principal
from app.modules.identity.repository import PrincipalRepository
from app.modules.identity.schemas import PrincipalCreate, PrincipalSnapshot

log = logging.getLogger("authz.identity")

def _now() -> datetime:
    return datetime.now(timezone.utc)

def snapshot_of(p: Principal, *, mfa_satisfied: bool = False) -> PrincipalSnapshot:
    return PrincipalSnapshot(
        id=p.id,
        role=p.role,
        attributes=copy.deepcopy(p.attributes or {}),
        assigned_patients=frozenset(str(x) for x in (p.assigned_patients or [])),
        active=p.active,
        locked_until=p.locked_until,
        version=p.version,
        mfa_satisfied=mfa_satisfied,
    )

def lock_reason(p: Principal | PrincipalSnapshot, at: datetime) -> str | None:
    if not p.active:
        return "account inactive"
    if p.locked_until is not None and p.locked_until > at:
        return "account locked"
    return None

class IdentityService:
    """Identity Context Resolver plus the principal mutations that need CAS."""

    def __init__(self, session: AsyncSession, *, autocommit: bool = True):
        self.session = session
        self.repo = PrincipalRepository(session)
        # False when running inside another unit of work (the audit writer's)
        self.autocommit = autocommit

    async def _commit(self):
        if self.autocommit:
            await self.session.commit()
        else:
            await self.session.flush()

    # ---- Resolution ----
    async def resolve(self, token: str | None) -> PrincipalSnapshot:
        cred = decode_credential(token)
        p = await self.repo.get(cred.principal_id)
        if not p:
            raise AuthenticationFailure("principal no longer exists")
        reason = lock_reason(p, _now())
        if reason:
            raise AccountLocked(reason, principal_id=p.id, role=p.role)
        if p.credentials_invalidated_at is not None:
            # second precision, like the iat claim
            if int(cred.issued_at.timestamp()) < int(p.credentials_invalidated_at.timestamp()):
                raise AuthenticationFailure("credential issued before last invalidation")
        return snapshot_of(p, mfa_satisfied=cred.mfa_satisfied)

    # ---- Registry ----
    async def register(self, payload: PrincipalCreate, principal_id: uuid.UUID | None = None) -> Principal:
        data = payload.model_dump()
        data["email"] = data["email"].lower()
        if principal_id is not None:
            data["id"] = principal_id
        obj = await self.repo.create(**data)
        await self._commit()
        return obj

    async def get(self, principal_id: uuid.UUID) -> Principal | None:
        return await self.repo.get(principal_id)

    async def list(self, **filters):
        return await self.repo.list(**filters)

    # ---- Optimistic-concurrency mutations ----
    async def _mutate(self, principal_id: uuid.UUID, change: Callable[[Principal], dict | None]) -> Principal:
        """Read, compute, compare-and-swap on version; retry a bounded number of times.

        `change` returns the column values to write, or None for a no-op.
        """
        for attempt in range(1, settings.PRINCIPAL_WRITE_MAX_ATTEMPTS + 1):
            p = await self.repo.get(principal_id)
            if not p:
                raise NotFound("principal not found")
            values = change(p)
            if values is None:
                await self._commit()
                return p
            ok = await self.repo.compare_and_set(principal_id, p.version, **values)
            await self._commit()
            if ok:
                return await self.repo.get(principal_id)
            log.info("Version conflict on principal %s (attempt %d)", principal_id, attempt)
        raise ConcurrentModification(f"principal {principal_id} changed concurrently")

    async def record_failed_login(self, principal_id: uuid.UUID) -> Principal:
        def change(p: Principal):
            now = _now()
            # an expired lock restarts the count
            if p.locked_until is not None and p.locked_until <= now:
                return {"failed_login_attempts": 1, "locked_until": None}
            attempts = (p.failed_login_attempts or 0) + 1
            values = {"failed_login_attempts": attempts}
            if attempts >= settings.MAX_FAILED_LOGINS and p.locked_until is None:
                values["locked_until"] = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
                log.warning("Principal %s locked after %d failed logins", principal_id, attempts)
            return values
        return await self._mutate(principal_id, change)

    async def record_successful_login(self, principal_id: uuid.UUID) -> Principal:
        return await self._mutate(principal_id, lambda p: {
            "failed_login_attempts": 0, "locked_until": None, "last_login_at": _now(),
        })

    async def invalidate_credentials(self, principal_id: uuid.UUID) -> Principal:
        return await self._mutate(principal_id, lambda p: {"credentials_invalidated_at": _now()})

    async def set_patient_assignment(self, principal_id: uuid.UUID, patient_id: str, assigned: bool = True) -> Principal:
        def change(p: Principal):
            current = [str(x) for x in (p.assigned_patients or [])]
            if assigned and patient_id not in current:
                return {"assigned_patients": current + [patient_id]}
            if not assigned and patient_id in current:
                return {"assigned_patients": [x for x in current if x != patient_id]}
            return None
        return await self._mutate(principal_id, change)

    async def suspend(self, principal_id: uuid.UUID) -> Principal:
        return await self._mutate(principal_id, lambda p: {"active": False})

    async def reinstate(self, principal_id: uuid.UUID) -> Principal:
        return await self._mutate(principal_id, lambda p: {
            "active": True, "locked_until": None, "failed_login_attempts": 0,
        })

    async def assign_patient(self, principal_id: uuid.UUID, patient_id: str) -> Principal:
        return await self.set_patient_assignment(principal_id, patient_id, True)

    async def unassign_patient(self, principal_id: uuid.UUID, patient_id: str) -> Principal:
        return await self.set_patient_assignment(principal_id, patient_id, False)
