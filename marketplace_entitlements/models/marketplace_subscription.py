from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_entitlements.models.base import RecordBase


class MarketplaceSubscription(RecordBase):
    __tablename__ = "marketplace_subscriptions"
    __table_args__ = (
        UniqueConstraint("origin", "subscription_id", name="uq_marketplace_subscriptions_origin_subscription"),
    )

    origin: Mapped[str] = mapped_column(String(20), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    offer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    last_operation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_oid: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_tenant: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
