from __future__ import annotations

from pydantic import BaseModel


class TenantRoleResponse(BaseModel):
    tenant_id: str
    user_id: str
    role: str | None
