import logging
from sqlalchemy.ext.asyncio import AsyncSession
from app.modules.policy.defaults import DEFAULT_RULES
from app.modules.policy.models import PolicyRule
from app.modules.policy.repository import PolicyRuleRepository
from app.modules.policy.schemas import AttributePredicate, PolicyRuleIn, PolicyRuleSpec

log = logging.getLogger("authz.policy")

def to_spec(rule: PolicyRule) -> PolicyRuleSpec:
    return PolicyRuleSpec(
        resource_type=rule.resource_type,
        action=rule.action,
        permitted_roles=frozenset(rule.permitted_roles or []),
        predicates=tuple(AttributePredicate.model_validate(p) for p in (rule.predicates or [])),
        requires_assignment=rule.requires_assignment,
        requires_consent=rule.requires_consent,
    )

class PolicyService:
    def __init__(self, session: AsyncSession, *, autocommit: bool = True):
        self.session = session
        self.repo = PolicyRuleRepository(session)
        self.autocommit = autocommit

    async def rule_for(self, resource_type: str, action: str) -> PolicyRuleSpec | None:
        rule = await self.repo.get(resource_type, action)
        return to_spec(rule) if rule else None

    async def put_rule(self, payload: PolicyRuleIn) -> PolicyRule:
        data = payload.model_dump()
        data["predicates"] = [p.model_dump(exclude_none=True) for p in payload.predicates]
        obj = await self.repo.upsert(**data)
        if self.autocommit:
            await self.session.commit()
        return obj

    async def get_rule(self, resource_type: str, action: str) -> PolicyRule | None:
        return await self.repo.get(resource_type, action)

    async def list_rules(self):
        return await self.repo.list()

    async def seed_defaults(self) -> int:
        if await self.repo.count():
            return 0
        for raw in DEFAULT_RULES:
            # validate through the API schema so seeded rules obey the closed operator set
            payload = PolicyRuleIn.model_validate(raw)
            data = payload.model_dump()
            data["predicates"] = [p.model_dump(exclude_none=True) for p in payload.predicates]
            await self.repo.upsert(**data)
        await self.session.commit()
        log.info("Seeded %d default policy rules", len(DEFAULT_RULES))
        return len(DEFAULT_RULES)
