from fastapi import APIRouter, Depends
from app.api.deps import AdminChange, admin_change, require_role
from app.core.db import get_session
from app.modules.policy.schemas import PolicyRuleIn, PolicyRuleOut
from app.modules.policy.service import PolicyService

router = APIRouter()

def svc(s = Depends(get_session)) -> PolicyService: return PolicyService(s)

@router.post("", response_model=PolicyRuleOut)
async def put_policy(
    payload: PolicyRuleIn,
    service: PolicyService = Depends(svc),
    admin: AdminChange = Depends(admin_change("admin", action="MANAGE_POLICY", resource_type="PolicyRule")),
):
    # a rule change and its audit entry commit together
    await admin.apply(
        f"{payload.resource_type}/{payload.action}",
        lambda s: PolicyService(s, autocommit=False).put_rule(payload),
    )
    return await service.get_rule(payload.resource_type, payload.action)

@router.get(
    "",
    response_model=list[PolicyRuleOut],
    dependencies=[Depends(require_role("admin", action="READ_POLICY", resource_type="PolicyRule"))],
)
async def list_policies(service: PolicyService = Depends(svc)):
    return await service.list_rules()
