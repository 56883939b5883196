from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_entitlements.models.base import TenantScopedBase


class SurveyResponse(TenantScopedBase):
    __tablename__ = "survey_responses"

    survey_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    participant_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    question_index: Mapped[int] = mapped_column(nullable=False)
