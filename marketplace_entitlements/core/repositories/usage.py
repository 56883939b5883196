from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.repositories.base import TenantRepository
from marketplace_entitlements.models.survey_response import SurveyResponse
from marketplace_entitlements.models.usage_record import UsageRecord


class UsageRecordRepository(TenantRepository[UsageRecord]):
    def __init__(self, session: AsyncSession, tenant_id: str | None) -> None:
        super().__init__(session=session, model=UsageRecord, tenant_id=tenant_id)

    async def count_for_week(self, category: str, week_key: str) -> int:
        return await self.count(UsageRecord.category == category, UsageRecord.week_key == week_key)

    async def append(self, category: str, week_key: str, recorded_at: datetime) -> UsageRecord:
        record = await self.create(category=category, week_key=week_key, recorded_at=recorded_at)
        await self.session.commit()
        return record


class SurveyResponseRepository(TenantRepository[SurveyResponse]):
    def __init__(self, session: AsyncSession, tenant_id: str | None) -> None:
        super().__init__(session=session, model=SurveyResponse, tenant_id=tenant_id)

    async def count_for_survey(self, survey_id: str) -> int:
        return await self.count(SurveyResponse.survey_id == survey_id)
