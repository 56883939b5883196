from marketplace_entitlements.schemas.billing import (
    PlanResponse,
    QuotaGuardResponse,
    ResponseGuardResponse,
    UsageResponse,
)
from marketplace_entitlements.schemas.marketplace import (
    MarketplaceHealthResponse,
    MarketplaceWebhookResponse,
)
from marketplace_entitlements.schemas.tenants import TenantRoleResponse

__all__ = [
    "PlanResponse",
    "UsageResponse",
    "QuotaGuardResponse",
    "ResponseGuardResponse",
    "MarketplaceWebhookResponse",
    "MarketplaceHealthResponse",
    "TenantRoleResponse",
]
