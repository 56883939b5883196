from __future__ import annotations

from pydantic import BaseModel


class PlanResponse(BaseModel):
    tenant_id: str
    tier: str
    weekly_survey_limit: int | None
    responses_per_survey_limit: int | None


class UsageResponse(BaseModel):
    tier: str
    category: str
    used: int
    limit: int | None
    remaining: int | None
    percent: int
    week_key: str


class QuotaGuardResponse(BaseModel):
    allowed: bool
    category: str
    used: int
    limit: int | None


class ResponseGuardResponse(BaseModel):
    survey_id: str
    allowed: bool
