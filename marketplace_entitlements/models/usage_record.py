from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_entitlements.models.base import TenantScopedBase


class UsageRecord(TenantScopedBase):
    __tablename__ = "usage_records"
    __table_args__ = (
        Index("ix_usage_records_tenant_category_week", "tenant_id", "category", "week_key"),
    )

    category: Mapped[str] = mapped_column(String(50), nullable=False)
    week_key: Mapped[str] = mapped_column(String(8), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
