from marketplace_entitlements.models.base import Base, RecordBase, TenantScopedBase
from marketplace_entitlements.models.marketplace_subscription import MarketplaceSubscription
from marketplace_entitlements.models.survey_response import SurveyResponse
from marketplace_entitlements.models.tenant_member import TenantMember
from marketplace_entitlements.models.usage_record import UsageRecord

__all__ = [
    "Base",
    "RecordBase",
    "TenantScopedBase",
    "MarketplaceSubscription",
    "SurveyResponse",
    "TenantMember",
    "UsageRecord",
]
