from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.errors import ValidationError
from marketplace_entitlements.core.plans import PlanTier, TierEntitlements, resolve_plan, tier_to_entitlements
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository
from marketplace_entitlements.core.repositories.usage import SurveyResponseRepository, UsageRecordRepository

logger = logging.getLogger(__name__)

SURVEY_CREATION = "survey_creation"
QUOTA_CATEGORIES = frozenset({SURVEY_CREATION})


def iso_week_key(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    iso_year, iso_week, _ = moment.astimezone(timezone.utc).isocalendar()
    return f"{iso_year}-{iso_week:02d}"


def weekly_limit(entitlements: TierEntitlements, category: str) -> int | None:
    if category == SURVEY_CREATION:
        return entitlements.weekly_survey_limit
    raise ValidationError(f"Unknown quota category: {category}")


@dataclass(slots=True)
class QuotaDecision:
    tier: PlanTier
    category: str
    week_key: str
    used: int
    limit: int | None

    @property
    def allowed(self) -> bool:
        return self.limit is None or self.used < self.limit

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)

    @property
    def percent(self) -> int:
        if not self.limit:
            return 0
        return round(self.used / self.limit * 100)


class QuotaEnforcer:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def check(self, tenant_id: str, category: str, now: datetime | None = None) -> QuotaDecision:
        tier = await resolve_plan(tenant_id, SubscriptionRepository(self.session))
        limit = weekly_limit(tier_to_entitlements(tier), category)
        week_key = iso_week_key(now)
        used = await UsageRecordRepository(self.session, tenant_id).count_for_week(category, week_key)
        return QuotaDecision(tier=tier, category=category, week_key=week_key, used=used, limit=limit)

    async def record(self, tenant_id: str, category: str, now: datetime | None = None) -> None:
        if category not in QUOTA_CATEGORIES:
            raise ValidationError(f"Unknown quota category: {category}")
        recorded_at = now or datetime.now(timezone.utc)
        await UsageRecordRepository(self.session, tenant_id).append(
            category, iso_week_key(recorded_at), recorded_at
        )
        logger.info("Recorded %s usage for tenant=%s", category, tenant_id)

    async def can_accept_response(self, tenant_id: str, survey_id: str) -> bool:
        tier = await resolve_plan(tenant_id, SubscriptionRepository(self.session))
        limit = tier_to_entitlements(tier).responses_per_survey_limit
        if limit is None:
            return True
        total = await SurveyResponseRepository(self.session, tenant_id).count_for_survey(survey_id)
        return total < limit


async def can_perform_quota_action(session: AsyncSession, tenant_id: str | None, category: str) -> bool:
    if not tenant_id:
        return False
    try:
        decision = await QuotaEnforcer(session).check(tenant_id, category)
    except ValidationError:
        return False
    return decision.allowed


async def record_quota_action(session: AsyncSession, tenant_id: str, category: str) -> None:
    await QuotaEnforcer(session).record(tenant_id, category)


async def ensure_quota_available(session: AsyncSession, tenant_id: str, category: str) -> QuotaDecision:
    try:
        decision = await QuotaEnforcer(session).check(tenant_id, category)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown quota category",
        ) from exc

    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"The {decision.tier} plan allows {decision.limit} {category} actions per week. "
                "Upgrade your plan to continue."
            ),
        )
    return decision

