from __future__ import annotations

from pydantic import BaseModel


class MarketplaceWebhookResponse(BaseModel):
    received: bool
    subscription_id: str
    operation_id: str
    status: str
    applied: bool
    ignored_reason: str | None = None
    acknowledged: bool = False


class MarketplaceHealthResponse(BaseModel):
    status: str
    marketplace_configured: bool
    oauth_configured: bool
    webhook_auth_configured: bool
    database_ok: bool
    correlation_backend: str
    missing: list[str]
