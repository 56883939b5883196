from marketplace_entitlements.core.repositories.base import TenantContextMissingError, TenantRepository
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository
from marketplace_entitlements.core.repositories.tenant_members import TenantMemberRepository
from marketplace_entitlements.core.repositories.usage import SurveyResponseRepository, UsageRecordRepository

__all__ = [
    "TenantContextMissingError",
    "TenantRepository",
    "SubscriptionRepository",
    "SurveyResponseRepository",
    "TenantMemberRepository",
    "UsageRecordRepository",
]
