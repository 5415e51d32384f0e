from fastapi import APIRouter
from app.modules.access.router import router as access_router
from app.modules.audit.router import router as audit_router
from app.modules.remediation.router import router as remediation_router
from app.modules.identity.router import router as identity_router
from app.modules.resources.router import router as resources_router
from app.modules.policy.router import router as policy_router

api_router = APIRouter()
api_router.include_router(access_router, tags=["access"])
api_router.include_router(audit_router, tags=["audit"])
# remediation_router also owns /principals/{id}/reinstate and /principals/{id}/remediations
api_router.include_router(remediation_router, tags=["remediation"])
api_router.include_router(identity_router, prefix="/principals", tags=["principals"])
api_router.include_router(resources_router, prefix="/resources", tags=["resources"])
api_router.include_router(policy_router, prefix="/policies", tags=["policies"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
