from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.ledger import SubscriptionRecord, SubscriptionStatus, select_current
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository

PlanTier = Literal["free", "pro", "enterprise"]

DEFAULT_TIER: PlanTier = "free"
PLAN_TIERS: tuple[PlanTier, ...] = ("free", "pro", "enterprise")

_PLAN_ALIASES: dict[str, PlanTier] = {
    "free": "free",
    "basic": "free",
    "trial": "free",
    "tier1": "free",
    "pro": "pro",
    "professional": "pro",
    "standard": "pro",
    "tier2": "pro",
    "ent": "enterprise",
    "enterprise": "enterprise",
    "premium": "enterprise",
    "tier3": "enterprise",
}

_SEPARATORS_RE = re.compile(r"[\s_]+")
_BILLING_TERM_RE = re.compile(r"-(monthly|annual|yearly)$")


@dataclass(slots=True)
class TierEntitlements:
    tier: PlanTier
    weekly_survey_limit: int | None
    responses_per_survey_limit: int | None


def normalize_plan_id(plan_id: str | None) -> PlanTier | None:
    if not plan_id:
        return None
    slug = _SEPARATORS_RE.sub("-", plan_id.strip().lower())
    slug = _BILLING_TERM_RE.sub("", slug)
    return _PLAN_ALIASES.get(slug) or _PLAN_ALIASES.get(slug.replace("-", ""))


def tier_to_entitlements(tier: str | None) -> TierEntitlements:
    normalized = (tier or DEFAULT_TIER).strip().lower()
    if normalized == "enterprise":
        return TierEntitlements(
            tier="enterprise",
            weekly_survey_limit=settings.enterprise_weekly_survey_limit,
            responses_per_survey_limit=None,
        )
    if normalized == "pro":
        return TierEntitlements(
            tier="pro",
            weekly_survey_limit=settings.pro_weekly_survey_limit,
            responses_per_survey_limit=None,
        )

    return TierEntitlements(
        tier="free",
        weekly_survey_limit=settings.free_weekly_survey_limit,
        responses_per_survey_limit=settings.free_responses_per_survey_limit,
    )


def resolve_plan_from_records(records: Iterable[SubscriptionRecord]) -> PlanTier:
    """Map a tenant's ledger records to a tier.

    Records for the same subscription in both partitions collapse to the
    current one first. Of what remains, the most recently modified Activated
    record with a plan id decides; anything else yields the default tier.
    """
    by_subscription: dict[str, list[SubscriptionRecord]] = {}
    for record in records:
        by_subscription.setdefault(record.subscription_id, []).append(record)

    activated = [
        current
        for current in (select_current(group) for group in by_subscription.values())
        if current is not None
        and current.status is SubscriptionStatus.ACTIVATED
        and current.plan_id
        and current.last_modified is not None
    ]
    if not activated:
        return DEFAULT_TIER

    latest = max(activated, key=lambda record: (record.last_modified, record.subscription_id))
    return normalize_plan_id(latest.plan_id) or DEFAULT_TIER


async def resolve_plan(tenant_id: str | None, subscriptions: SubscriptionRepository) -> PlanTier:
    if not tenant_id:
        return DEFAULT_TIER
    records = await subscriptions.list_for_tenant(tenant_id)
    return resolve_plan_from_records(records)
