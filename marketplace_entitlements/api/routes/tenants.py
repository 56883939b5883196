from __future__ import annotations

from fastapi import APIRouter, Depends

from marketplace_entitlements.core.auth import AuthContext, require_auth_context
from marketplace_entitlements.core.plans import PlanTier
from marketplace_entitlements.core.roles import Role, get_current_role, require_plan_tiers, require_roles
from marketplace_entitlements.schemas.tenants import TenantRoleResponse

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/me/role", response_model=TenantRoleResponse)
async def get_my_role(
    context: AuthContext = Depends(require_auth_context),
    role: Role | None = Depends(get_current_role),
) -> TenantRoleResponse:
    return TenantRoleResponse(tenant_id=context.tenant_id, user_id=context.user_id, role=role)


@router.get("/me/admin-check")
async def admin_check(
    _: Role = Depends(require_roles("admin")),
) -> dict[str, bool]:
    return {"allowed": True}


@router.get("/me/premium-check")
async def premium_check(
    _: PlanTier = Depends(require_plan_tiers("pro", "enterprise")),
) -> dict[str, bool]:
    return {"allowed": True}
