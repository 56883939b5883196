"""Subscription lifecycle reconciliation for marketplace operation webhooks.

The notification body only says *which* operation to look at. Status is
always re-derived from the operation fetched from the marketplace API, so the
whole pipeline can be re-run for a redelivered notification without changing
the outcome.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from marketplace_entitlements.core.errors import ConfigurationError, EntitlementError, ValidationError
from marketplace_entitlements.core.ledger import (
    ORIGIN_WEBHOOK,
    LedgerUpdate,
    SubscriptionStatus,
    merge_update,
)
from marketplace_entitlements.core.marketplace import MarketplaceClient, OperationSnapshot, optional_int
from marketplace_entitlements.core.repositories.subscriptions import SubscriptionRepository

logger = logging.getLogger(__name__)

_ACTION_STATUS: dict[str, SubscriptionStatus] = {
    "activate": SubscriptionStatus.ACTIVATED,
    "changeplan": SubscriptionStatus.ACTIVATED,
    "changequantity": SubscriptionStatus.ACTIVATED,
    "reinstate": SubscriptionStatus.ACTIVATED,
    "renew": SubscriptionStatus.ACTIVATED,
    "suspend": SubscriptionStatus.SUSPENDED,
    "unsubscribe": SubscriptionStatus.UNSUBSCRIBED,
    "delete": SubscriptionStatus.UNSUBSCRIBED,
}


def normalize_label(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return "".join(ch for ch in value.strip().lower() if ch not in " _-")


def status_for_action(action: object) -> SubscriptionStatus:
    return _ACTION_STATUS.get(normalize_label(action), SubscriptionStatus.UNKNOWN)


def derive_status(action: object, operation_status: object) -> SubscriptionStatus:
    status = status_for_action(action)
    if status is not SubscriptionStatus.UNKNOWN:
        return status

    op_status = normalize_label(operation_status)
    if op_status == "succeeded":
        return SubscriptionStatus.ACTIVATED
    if op_status == "failed":
        return SubscriptionStatus.FAILED
    return SubscriptionStatus.PENDING


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


@dataclass(slots=True, frozen=True)
class OperationNotification:
    operation_id: str
    subscription_id: str
    action: str | None = None
    plan_id: str | None = None
    offer_id: str | None = None
    quantity: int | None = None

    @classmethod
    def from_payload(cls, payload: object) -> OperationNotification:
        if not isinstance(payload, dict):
            raise ValidationError("Notification body must be a JSON object")

        operation_id = payload.get("id") or payload.get("operationId")
        subscription_id = payload.get("subscriptionId")
        if not operation_id or not subscription_id:
            raise ValidationError("Notification is missing id or subscriptionId")

        return cls(
            operation_id=str(operation_id),
            subscription_id=str(subscription_id),
            action=_optional_str(payload.get("action")),
            plan_id=_optional_str(payload.get("planId")),
            offer_id=_optional_str(payload.get("offerId")),
            quantity=optional_int(payload.get("quantity")),
        )


@dataclass(slots=True)
class ReconcileOutcome:
    subscription_id: str
    operation_id: str
    status: SubscriptionStatus
    applied: bool
    ignored_reason: str | None = None
    acknowledged: bool = False


class Reconciler:
    def __init__(self, subscriptions: SubscriptionRepository, client: MarketplaceClient) -> None:
        self.subscriptions = subscriptions
        self.client = client

    async def process(self, notification: OperationNotification) -> ReconcileOutcome:
        snapshot = await asyncio.to_thread(
            self.client.get_operation,
            notification.subscription_id,
            notification.operation_id,
        )

        existing = await self.subscriptions.find(notification.subscription_id)
        update = LedgerUpdate(
            status=derive_status(snapshot.action or notification.action, snapshot.status),
            observed_at=snapshot.timestamp or datetime.now(timezone.utc),
            operation_id=notification.operation_id,
            plan_id=snapshot.plan_id or notification.plan_id,
            offer_id=snapshot.offer_id or notification.offer_id,
            quantity=snapshot.quantity if snapshot.quantity is not None else notification.quantity,
        )
        result = merge_update(
            existing,
            update,
            subscription_id=notification.subscription_id,
            origin=existing.origin if existing is not None else ORIGIN_WEBHOOK,
        )

        ignored_reason = result.ignored_reason
        if result.applied:
            stored = await self.subscriptions.upsert(result.record)
            if stored:
                logger.info(
                    "Merged operation=%s subscription=%s status=%s",
                    notification.operation_id,
                    notification.subscription_id,
                    result.record.status.value,
                )
            else:
                ignored_reason = "stale"
                logger.info(
                    "Concurrent newer write kept for subscription=%s, operation=%s not stored",
                    notification.subscription_id,
                    notification.operation_id,
                )
        else:
            logger.info(
                "Ignored operation=%s subscription=%s reason=%s stored_at=%s incoming_at=%s",
                notification.operation_id,
                notification.subscription_id,
                result.ignored_reason,
                existing.last_modified if existing is not None else None,
                update.observed_at,
            )

        acknowledged = await self._acknowledge(snapshot, notification)
        return ReconcileOutcome(
            subscription_id=notification.subscription_id,
            operation_id=notification.operation_id,
            status=result.record.status,
            applied=ignored_reason is None,
            ignored_reason=ignored_reason,
            acknowledged=acknowledged,
        )

    async def _acknowledge(
        self,
        snapshot: OperationSnapshot,
        notification: OperationNotification,
    ) -> bool:
        if not snapshot.in_progress:
            logger.debug(
                "Operation=%s already final (%s), no acknowledgement",
                notification.operation_id,
                snapshot.status,
            )
            return False

        try:
            await asyncio.to_thread(
                self.client.acknowledge_operation,
                notification.subscription_id,
                notification.operation_id,
            )
        except (EntitlementError, ConfigurationError):
            # The ledger merge stands; redelivery of the notification retries this.
            logger.exception(
                "Acknowledgement failed for operation=%s subscription=%s",
                notification.operation_id,
                notification.subscription_id,
            )
            return False
        return True
