from __future__ import annotations

import dataclasses
import os

os.environ.setdefault("STRICT_CONFIG", "false")
os.environ.setdefault("CORRELATION_BACKEND", "memory")

import pytest

from marketplace_entitlements.core.ledger import (
    ORIGINS,
    SubscriptionRecord,
    SubscriptionStatus,
    select_current,
)


class FakeSubscriptionRepository:
    """Dict-backed ledger that applies the same last-modified guard as the SQL upsert."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], SubscriptionRecord] = {}
        self.upserts: list[SubscriptionRecord] = []

    def seed(self, record: SubscriptionRecord) -> None:
        self.rows[(record.origin, record.subscription_id)] = dataclasses.replace(record)

    async def get(self, origin: str, subscription_id: str) -> SubscriptionRecord | None:
        return self.rows.get((origin, subscription_id))

    async def find(self, subscription_id: str) -> SubscriptionRecord | None:
        return select_current(self.rows.get((origin, subscription_id)) for origin in ORIGINS)

    async def upsert(self, record: SubscriptionRecord) -> bool:
        self.upserts.append(dataclasses.replace(record))
        stored = self.rows.get((record.origin, record.subscription_id))
        if stored is not None and stored.last_modified > record.last_modified:
            return False
        self.rows[(record.origin, record.subscription_id)] = dataclasses.replace(record)
        return True

    async def list_for_tenant(self, tenant_id: str) -> list[SubscriptionRecord]:
        return [record for record in self.rows.values() if record.user_tenant == tenant_id]

    async def has_activated_purchase(self, tenant_id: str, user_oid: str) -> bool:
        return any(
            record.user_tenant == tenant_id
            and record.user_oid == user_oid
            and record.status is SubscriptionStatus.ACTIVATED
            for record in self.rows.values()
        )


@pytest.fixture
def subscriptions() -> FakeSubscriptionRepository:
    return FakeSubscriptionRepository()
