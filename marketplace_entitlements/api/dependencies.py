from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_entitlements.core.correlation import CorrelationStore, get_correlation_store
from marketplace_entitlements.core.db import get_db_session
from marketplace_entitlements.core.identity import IdentityLinker
from marketplace_entitlements.core.marketplace import MarketplaceClient
from marketplace_entitlements.core.reconciler import Reconciler
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository


def get_marketplace_client() -> MarketplaceClient:
    return MarketplaceClient()


def get_reconciler(
    session: AsyncSession = Depends(get_db_session),
    client: MarketplaceClient = Depends(get_marketplace_client),
) -> Reconciler:
    return Reconciler(SubscriptionRepository(session), client)


def get_identity_linker(
    session: AsyncSession = Depends(get_db_session),
    client: MarketplaceClient = Depends(get_marketplace_client),
    store: CorrelationStore = Depends(get_correlation_store),
) -> IdentityLinker:
    return IdentityLinker(
        subscriptions=SubscriptionRepository(session),
        client=client,
        store=store,
    )
