from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlencode

import requests
from jose import JWTError, jwt

from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.correlation import CorrelationEntry, CorrelationStore
from marketplace_entitlements.core.errors import (
    AuthenticationError,
    ConfigurationError,
    SessionExpiredError,
    TransientUpstreamError,
    ValidationError,
)
from marketplace_entitlements.core.ledger import (
    ORIGIN_LANDING,
    LedgerUpdate,
    PurchaserIdentity,
    SubscriptionRecord,
    SubscriptionStatus,
    attach_identity,
    merge_update,
)
from marketplace_entitlements.core.marketplace import MarketplaceClient
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class LinkResult:
    subscription_id: str
    plan_id: str | None
    status: SubscriptionStatus
    identity: PurchaserIdentity


def build_authorization_url(state: str) -> str:
    if not settings.oauth_client_id or not settings.oauth_redirect_uri:
        raise ConfigurationError("OAuth client id and redirect URI are not configured")

    query = urlencode(
        {
            "client_id": settings.oauth_client_id,
            "response_type": "code",
            "redirect_uri": settings.oauth_redirect_uri,
            "response_mode": "query",
            "scope": " ".join(settings.oauth_scopes()),
            "state": state,
            "prompt": "select_account",
        }
    )
    return f"{settings.oauth_endpoint('authorize')}?{query}"


def exchange_code_for_tokens(code: str) -> dict:
    if not (settings.oauth_client_id and settings.oauth_client_secret and settings.oauth_redirect_uri):
        raise ConfigurationError("OAuth client credentials are not configured")

    try:
        response = requests.post(
            settings.oauth_endpoint("token"),
            data={
                "client_id": settings.oauth_client_id,
                "client_secret": settings.oauth_client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.oauth_redirect_uri,
                "scope": " ".join(settings.oauth_scopes()),
            },
            timeout=10,
        )
    except requests.RequestException as exc:
        raise TransientUpstreamError("Identity provider is unreachable") from exc

    if response.status_code >= 500:
        raise TransientUpstreamError(f"Identity provider returned {response.status_code}")
    if response.status_code >= 400:
        raise AuthenticationError("Authorization code was rejected")
    return response.json()


def identity_from_id_token(id_token: str | None) -> PurchaserIdentity:
    """Read the purchaser identity out of a back-channel id token.

    The token arrives directly from the token endpoint over TLS, so only its
    structure and audience are checked here.
    """
    if not id_token:
        raise AuthenticationError("Token response did not include an id token")

    try:
        claims = jwt.get_unverified_claims(id_token)
    except JWTError as exc:
        raise AuthenticationError("Identity token is malformed") from exc

    audience = claims.get("aud")
    audiences = audience if isinstance(audience, list) else [audience]
    if settings.oauth_client_id not in audiences:
        raise AuthenticationError("Identity token was issued for another client")

    oid = claims.get("oid") or claims.get("sub")
    tenant_id = claims.get("tid")
    email = claims.get("email") or claims.get("preferred_username") or claims.get("upn")
    if not oid or not tenant_id or not email:
        raise AuthenticationError("Identity token is missing required claims")

    return PurchaserIdentity(
        oid=str(oid),
        tenant_id=str(tenant_id),
        email=str(email),
        name=str(claims.get("name") or email),
    )


class IdentityLinker:
    def __init__(
        self,
        *,
        subscriptions: SubscriptionRepository,
        client: MarketplaceClient,
        store: CorrelationStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.subscriptions = subscriptions
        self.client = client
        self.store = store
        self.clock = clock

    async def begin(self, marketplace_token: str | None) -> str:
        if not marketplace_token or not marketplace_token.strip():
            raise ValidationError("Marketplace token is required")

        state = secrets.token_urlsafe(32)
        authorization_url = build_authorization_url(state)
        await self.store.put(
            state,
            CorrelationEntry(marketplace_token=marketplace_token.strip(), created_at=self.clock()),
            settings.correlation_ttl_seconds,
        )
        return authorization_url

    async def complete(self, *, code: str | None, state: str | None) -> LinkResult:
        if not state:
            raise SessionExpiredError("Missing state parameter")

        entry = await self.store.take_once(state)
        if entry is None:
            raise SessionExpiredError("Unknown, expired or already used state")
        if not code:
            raise ValidationError("Missing authorization code")

        tokens = await asyncio.to_thread(exchange_code_for_tokens, code)
        identity = identity_from_id_token(tokens.get("id_token"))

        purchase = await asyncio.to_thread(self.client.resolve_purchase_token, entry.marketplace_token)
        if not purchase.plan_id:
            raise ValidationError("Resolved purchase has no plan")

        existing = await self.subscriptions.find(purchase.subscription_id)
        pending = await self._persist(
            existing,
            LedgerUpdate(
                status=SubscriptionStatus.PENDING,
                observed_at=self.clock(),
                plan_id=purchase.plan_id,
                offer_id=purchase.offer_id,
                quantity=purchase.quantity,
                identity=identity,
            ),
            purchase.subscription_id,
        )

        await asyncio.to_thread(
            self.client.activate,
            purchase.subscription_id,
            purchase.plan_id,
            purchase.quantity,
        )

        activated = await self._persist(
            pending,
            LedgerUpdate(
                status=SubscriptionStatus.ACTIVATED,
                observed_at=self.clock(),
                plan_id=purchase.plan_id,
                identity=identity,
            ),
            purchase.subscription_id,
        )
        logger.info(
            "Linked subscription=%s to tenant=%s user=%s",
            purchase.subscription_id,
            identity.tenant_id,
            identity.oid,
        )
        return LinkResult(
            subscription_id=purchase.subscription_id,
            plan_id=activated.plan_id,
            status=activated.status,
            identity=identity,
        )

    async def _persist(
        self,
        existing: SubscriptionRecord | None,
        update: LedgerUpdate,
        subscription_id: str,
    ) -> SubscriptionRecord:
        result = merge_update(existing, update, subscription_id=subscription_id, origin=ORIGIN_LANDING)
        if result.applied:
            await self.subscriptions.upsert(result.record)
            return result.record

        logger.info(
            "Landing merge ignored for subscription=%s reason=%s",
            subscription_id,
            result.ignored_reason,
        )
        if update.identity is None:
            return result.record

        # A newer status stays; the purchaser is still recorded against it.
        linked = attach_identity(
            result.record,
            update.identity,
            origin=ORIGIN_LANDING,
            plan_id=update.plan_id,
            offer_id=update.offer_id,
            quantity=update.quantity,
        )
        if linked != result.record:
            await self.subscriptions.upsert(linked)
        return linked
