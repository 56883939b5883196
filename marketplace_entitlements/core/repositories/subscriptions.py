from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.errors import TransientUpstreamError
from marketplace_entitlements.core.ledger import (
    ORIGINS,
    SubscriptionOrigin,
    SubscriptionRecord,
    SubscriptionStatus,
    select_current,
)
from marketplace_entitlements.models.marketplace_subscription import MarketplaceSubscription

_UPSERT_FIELDS = (
    "plan_id",
    "offer_id",
    "quantity",
    "status",
    "last_operation_id",
    "user_oid",
    "user_email",
    "user_name",
    "user_tenant",
    "last_modified",
    "updated_at",
)


class SubscriptionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _unavailable(self) -> TransientUpstreamError:
        await self.session.rollback()
        return TransientUpstreamError("Subscription store is unavailable")

    async def get(self, origin: SubscriptionOrigin, subscription_id: str) -> SubscriptionRecord | None:
        try:
            row = await self.session.scalar(
                select(MarketplaceSubscription).where(
                    MarketplaceSubscription.origin == origin,
                    MarketplaceSubscription.subscription_id == subscription_id,
                )
            )
        except SQLAlchemyError as exc:
            raise await self._unavailable() from exc
        return SubscriptionRecord.from_row(row) if row is not None else None

    async def find(self, subscription_id: str) -> SubscriptionRecord | None:
        records = [await self.get(origin, subscription_id) for origin in ORIGINS]
        return select_current(records)

    def build_upsert(self, record: SubscriptionRecord):  # noqa: ANN201
        values = record.to_values()
        stmt = insert(MarketplaceSubscription).values(**values)
        # Rows stamped later than the incoming record are left untouched.
        return stmt.on_conflict_do_update(
            index_elements=[MarketplaceSubscription.origin, MarketplaceSubscription.subscription_id],
            set_={field: stmt.excluded[field] for field in _UPSERT_FIELDS},
            where=MarketplaceSubscription.last_modified <= stmt.excluded.last_modified,
        )

    async def upsert(self, record: SubscriptionRecord) -> bool:
        try:
            result = await self.session.execute(self.build_upsert(record))
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._unavailable() from exc
        return (result.rowcount or 0) > 0

    async def list_for_tenant(self, tenant_id: str) -> list[SubscriptionRecord]:
        try:
            rows = await self.session.scalars(
                select(MarketplaceSubscription).where(MarketplaceSubscription.user_tenant == tenant_id)
            )
        except SQLAlchemyError as exc:
            raise await self._unavailable() from exc
        return [SubscriptionRecord.from_row(row) for row in rows.all()]

    async def has_activated_purchase(self, tenant_id: str, user_oid: str) -> bool:
        try:
            row = await self.session.scalar(
                select(MarketplaceSubscription.id)
                .where(
                    MarketplaceSubscription.user_tenant == tenant_id,
                    MarketplaceSubscription.user_oid == user_oid,
                    MarketplaceSubscription.status == SubscriptionStatus.ACTIVATED.value,
                )
                .limit(1)
            )
        except SQLAlchemyError as exc:
            raise await self._unavailable() from exc
        return row is not None
