from marketplace_entitlements.api.routes.billing import router as billing_router
from marketplace_entitlements.api.routes.landing import router as landing_router
from marketplace_entitlements.api.routes.tenants import router as tenants_router
from marketplace_entitlements.api.routes.webhooks import router as webhooks_router

__all__ = [
    "billing_router",
    "landing_router",
    "tenants_router",
    "webhooks_router",
]
