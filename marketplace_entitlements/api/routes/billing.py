from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.auth import AuthContext, require_auth_context
from marketplace_entitlements.core.db import get_db_session
from marketplace_entitlements.core.errors import ValidationError
from marketplace_entitlements.core.plans import PlanTier, tier_to_entitlements
from marketplace_entitlements.core.quota import (
    SURVEY_CREATION,
    QuotaDecision,
    QuotaEnforcer,
    ensure_quota_available,
    record_quota_action,
)
from marketplace_entitlements.core.roles import get_current_tier, require_roles
from marketplace_entitlements.schemas.billing import (
    PlanResponse,
    QuotaGuardResponse,
    ResponseGuardResponse,
    UsageResponse,
)

router = APIRouter(prefix="/billing", tags=["billing"])


def _usage_response(decision: QuotaDecision) -> UsageResponse:
    return UsageResponse(
        tier=decision.tier,
        category=decision.category,
        used=decision.used,
        limit=decision.limit,
        remaining=decision.remaining,
        percent=decision.percent,
        week_key=decision.week_key,
    )


@router.get("/plan", response_model=PlanResponse)
async def get_plan(
    context: AuthContext = Depends(require_auth_context),
    tier: PlanTier = Depends(get_current_tier),
) -> PlanResponse:
    entitlements = tier_to_entitlements(tier)
    return PlanResponse(
        tenant_id=context.tenant_id,
        tier=entitlements.tier,
        weekly_survey_limit=entitlements.weekly_survey_limit,
        responses_per_survey_limit=entitlements.responses_per_survey_limit,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    category: str = SURVEY_CREATION,
    context: AuthContext = Depends(require_auth_context),
    session: AsyncSession = Depends(get_db_session),
) -> UsageResponse:
    try:
        decision = await QuotaEnforcer(session).check(context.tenant_id, category)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown quota category",
        ) from exc
    return _usage_response(decision)


@router.post("/guards/{category}", response_model=QuotaGuardResponse)
async def quota_guard(
    category: str,
    context: AuthContext = Depends(require_auth_context),
    session: AsyncSession = Depends(get_db_session),
) -> QuotaGuardResponse:
    decision = await ensure_quota_available(session, context.tenant_id, category)
    return QuotaGuardResponse(
        allowed=True,
        category=category,
        used=decision.used,
        limit=decision.limit,
    )


@router.post("/usage/{category}", response_model=UsageResponse)
async def record_usage(
    category: str,
    context: AuthContext = Depends(require_auth_context),
    _: str = Depends(require_roles("admin", "manager")),
    session: AsyncSession = Depends(get_db_session),
) -> UsageResponse:
    await ensure_quota_available(session, context.tenant_id, category)
    await record_quota_action(session, context.tenant_id, category)
    decision = await QuotaEnforcer(session).check(context.tenant_id, category)
    return _usage_response(decision)


@router.post("/surveys/{survey_id}/responses/guard", response_model=ResponseGuardResponse)
async def response_guard(
    survey_id: str,
    context: AuthContext = Depends(require_auth_context),
    session: AsyncSession = Depends(get_db_session),
) -> ResponseGuardResponse:
    if not await QuotaEnforcer(session).can_accept_response(context.tenant_id, survey_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This survey has reached the response limit for the free plan",
        )
    return ResponseGuardResponse(survey_id=survey_id, allowed=True)
