from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime

import requests

from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.errors import (
    ConfigurationError,
    MarketplaceApiError,
    TransientUpstreamError,
    ValidationError,
)
from marketplace_entitlements.core.ledger import parse_timestamp

logger = logging.getLogger(__name__)

OPERATION_IN_PROGRESS = "inprogress"


def optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True, frozen=True)
class OperationSnapshot:
    operation_id: str
    subscription_id: str
    action: str | None
    status: str | None
    plan_id: str | None = None
    offer_id: str | None = None
    quantity: int | None = None
    timestamp: datetime | None = None

    @property
    def in_progress(self) -> bool:
        return (self.status or "").replace(" ", "").lower() == OPERATION_IN_PROGRESS

    @classmethod
    def from_payload(cls, payload: dict) -> OperationSnapshot:
        return cls(
            operation_id=str(payload.get("id") or ""),
            subscription_id=str(payload.get("subscriptionId") or ""),
            action=payload.get("action"),
            status=payload.get("status"),
            plan_id=payload.get("planId"),
            offer_id=payload.get("offerId"),
            quantity=optional_int(payload.get("quantity")),
            timestamp=parse_timestamp(payload.get("timeStamp")),
        )


@dataclass(slots=True, frozen=True)
class ResolvedPurchase:
    subscription_id: str
    plan_id: str | None
    offer_id: str | None
    quantity: int | None

    @classmethod
    def from_payload(cls, payload: dict) -> ResolvedPurchase:
        subscription_id = payload.get("id") or payload.get("subscriptionId")
        if not subscription_id:
            raise ValidationError("Resolved purchase is missing a subscription id")
        subscription = payload.get("subscription") or {}
        return cls(
            subscription_id=str(subscription_id),
            plan_id=payload.get("planId") or subscription.get("planId"),
            offer_id=payload.get("offerId") or subscription.get("offerId"),
            quantity=optional_int(payload.get("quantity") or subscription.get("quantity")),
        )


class MarketplaceCredentialProvider:
    """Client-credentials access token for the marketplace API audience."""

    def __init__(self, refresh_margin_seconds: int = 60) -> None:
        self.refresh_margin_seconds = refresh_margin_seconds
        self._token: str | None = None
        self._expires_at = 0.0

    def get_token(self) -> str:
        now = time.time()
        if self._token and now < self._expires_at - self.refresh_margin_seconds:
            return self._token

        if not (
            settings.marketplace_tenant_id
            and settings.marketplace_client_id
            and settings.marketplace_client_secret
        ):
            raise ConfigurationError("Marketplace API credentials are not configured")

        try:
            response = requests.post(
                settings.marketplace_token_endpoint(),
                data={
                    "grant_type": "client_credentials",
                    "client_id": settings.marketplace_client_id,
                    "client_secret": settings.marketplace_client_secret,
                    "scope": settings.marketplace_resource_scope,
                },
                timeout=settings.marketplace_http_timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransientUpstreamError("Unable to obtain a marketplace access token") from exc

        body = response.json()
        token = body.get("access_token")
        if not token:
            raise TransientUpstreamError("Token endpoint returned no access token")

        self._token = token
        self._expires_at = now + int(body.get("expires_in") or 0)
        return token


marketplace_credentials = MarketplaceCredentialProvider()


class MarketplaceClient:
    def __init__(self, credentials: MarketplaceCredentialProvider | None = None) -> None:
        self.base_url = settings.marketplace_api_base_url.rstrip("/")
        self.credentials = credentials or marketplace_credentials

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        request_headers = {
            "Authorization": f"Bearer {self.credentials.get_token()}",
            "Content-Type": "application/json",
        }
        request_headers.update(headers or {})
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                params={"api-version": settings.marketplace_api_version},
                headers=request_headers,
                json=json,
                timeout=settings.marketplace_http_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TransientUpstreamError(f"Marketplace API unreachable: {method} {path}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError(
                f"Marketplace API unavailable: {method} {path} -> {response.status_code}"
            )
        if response.status_code >= 400:
            raise MarketplaceApiError(
                f"Marketplace API rejected {method} {path}", status_code=response.status_code
            )
        return response

    def get_operation(self, subscription_id: str, operation_id: str) -> OperationSnapshot:
        response = self._send(
            "GET", f"/saas/subscriptions/{subscription_id}/operations/{operation_id}"
        )
        snapshot = OperationSnapshot.from_payload(response.json())
        if not snapshot.operation_id or not snapshot.subscription_id:
            snapshot = replace(
                snapshot,
                operation_id=snapshot.operation_id or operation_id,
                subscription_id=snapshot.subscription_id or subscription_id,
            )
        return snapshot

    def resolve_purchase_token(self, marketplace_token: str) -> ResolvedPurchase:
        response = self._send(
            "POST",
            "/saas/subscriptions/resolve",
            headers={"x-ms-marketplace-token": marketplace_token},
        )
        return ResolvedPurchase.from_payload(response.json())

    def activate(self, subscription_id: str, plan_id: str, quantity: int | None = None) -> None:
        body: dict[str, object] = {"planId": plan_id}
        if quantity is not None:
            body["quantity"] = quantity
        self._send("POST", f"/saas/subscriptions/{subscription_id}/activate", json=body)
        logger.info("Activated marketplace subscription=%s plan=%s", subscription_id, plan_id)

    def acknowledge_operation(
        self,
        subscription_id: str,
        operation_id: str,
        status: str = "Success",
    ) -> None:
        self._send(
            "PATCH",
            f"/saas/subscriptions/{subscription_id}/operations/{operation_id}",
            json={"status": status},
        )
        logger.info(
            "Acknowledged operation=%s subscription=%s status=%s",
            operation_id,
            subscription_id,
            status,
        )
